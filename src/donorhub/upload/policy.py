"""Size and content-type rules per logical file category.

The same limits are enforced by the origin server; checking them here
rejects a file before any grant is requested.
"""

from __future__ import annotations

from dataclasses import dataclass

from donorhub.models import FileDescriptor, LogicalCategory
from donorhub.upload.exceptions import TooLarge, UnsupportedType, ValidationError

MIB = 1024 * 1024

# General ceiling; bank KYC documents use the narrower document limit.
DEFAULT_MAX_BYTES = 15 * MIB
BANK_DOCUMENT_MAX_BYTES = 10 * MIB

IMAGE_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
)
DOCUMENT_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "application/pdf",
)
VERIFICATION_TYPES: tuple[str, ...] = IMAGE_TYPES + ("application/pdf",)


@dataclass(frozen=True)
class CategoryRule:
    """Limits applied to one logical category."""

    max_bytes: int
    allowed_types: tuple[str, ...]


DEFAULT_RULES: dict[LogicalCategory, CategoryRule] = {
    LogicalCategory.PROFILE_PICTURE: CategoryRule(DEFAULT_MAX_BYTES, IMAGE_TYPES),
    LogicalCategory.CAMPAIGN_COVER: CategoryRule(DEFAULT_MAX_BYTES, IMAGE_TYPES),
    LogicalCategory.CAMPAIGN_IMAGE: CategoryRule(DEFAULT_MAX_BYTES, IMAGE_TYPES),
    LogicalCategory.BLOG_COVER: CategoryRule(DEFAULT_MAX_BYTES, IMAGE_TYPES),
    LogicalCategory.BLOG_IMAGE: CategoryRule(DEFAULT_MAX_BYTES, IMAGE_TYPES),
    LogicalCategory.CAMPAIGN_VERIFICATION: CategoryRule(
        DEFAULT_MAX_BYTES, VERIFICATION_TYPES
    ),
    LogicalCategory.DOCUMENT_CITIZENSHIP: CategoryRule(DEFAULT_MAX_BYTES, DOCUMENT_TYPES),
    LogicalCategory.DOCUMENT_LICENSE: CategoryRule(DEFAULT_MAX_BYTES, DOCUMENT_TYPES),
    LogicalCategory.DOCUMENT_PASSPORT: CategoryRule(DEFAULT_MAX_BYTES, DOCUMENT_TYPES),
    LogicalCategory.BANK_DOCUMENT: CategoryRule(BANK_DOCUMENT_MAX_BYTES, DOCUMENT_TYPES),
}


def normalize_content_type(content_type: str) -> str:
    """Lower-case a MIME type and drop any parameters (``; charset=...``)."""
    return content_type.split(";", 1)[0].strip().lower()


class UploadPolicy:
    """Validates a file against the rules of its category.

    Rules are evaluated in order: size ceiling first, then content type.
    Pure and side-effect free; safe to call repeatedly.

    Args:
        rules: Optional replacement rule table. Categories missing from it
            cannot be validated and raise ``KeyError``.
    """

    def __init__(self, rules: dict[LogicalCategory, CategoryRule] | None = None) -> None:
        self._rules = dict(DEFAULT_RULES if rules is None else rules)

    def rule(self, category: LogicalCategory) -> CategoryRule:
        return self._rules[category]

    def ceiling(self, category: LogicalCategory) -> int:
        """Maximum byte size accepted for *category*."""
        return self._rules[category].max_bytes

    def allowed_types(self, category: LogicalCategory) -> tuple[str, ...]:
        """Content types accepted for *category*."""
        return self._rules[category].allowed_types

    def check(
        self, descriptor: FileDescriptor, category: LogicalCategory
    ) -> ValidationError | None:
        """Return the rejection for *descriptor*, or ``None`` if it passes."""
        rule = self._rules[category]
        if descriptor.byte_size > rule.max_bytes:
            return TooLarge(descriptor.byte_size, rule.max_bytes)
        if normalize_content_type(descriptor.content_type) not in rule.allowed_types:
            return UnsupportedType(descriptor.content_type, rule.allowed_types)
        return None

    def validate(self, descriptor: FileDescriptor, category: LogicalCategory) -> None:
        """Raise :class:`TooLarge` or :class:`UnsupportedType` on rejection."""
        rejection = self.check(descriptor, category)
        if rejection is not None:
            raise rejection
