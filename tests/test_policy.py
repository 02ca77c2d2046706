"""Tests for UploadPolicy size and content-type rules."""

from __future__ import annotations

import pytest

from donorhub.models import FileDescriptor, LogicalCategory
from donorhub.upload.exceptions import TooLarge, UnsupportedType
from donorhub.upload.policy import (
    BANK_DOCUMENT_MAX_BYTES,
    DEFAULT_MAX_BYTES,
    MIB,
    CategoryRule,
    UploadPolicy,
    normalize_content_type,
)


class TestCeilings:
    """Size ceilings per category."""

    def test_image_categories_use_15_mib(self):
        policy = UploadPolicy()
        for category in (
            LogicalCategory.PROFILE_PICTURE,
            LogicalCategory.CAMPAIGN_COVER,
            LogicalCategory.CAMPAIGN_IMAGE,
            LogicalCategory.BLOG_COVER,
            LogicalCategory.BLOG_IMAGE,
        ):
            assert policy.ceiling(category) == 15 * MIB

    def test_bank_document_uses_10_mib(self):
        assert UploadPolicy().ceiling(LogicalCategory.BANK_DOCUMENT) == BANK_DOCUMENT_MAX_BYTES
        assert BANK_DOCUMENT_MAX_BYTES == 10 * MIB

    def test_every_category_has_a_rule(self):
        policy = UploadPolicy()
        for category in LogicalCategory:
            assert policy.rule(category).max_bytes > 0

    def test_exactly_at_ceiling_passes(self, sized_file):
        """The ceiling is inclusive."""
        policy = UploadPolicy()
        descriptor = sized_file("edge.png", DEFAULT_MAX_BYTES)
        assert policy.check(descriptor, LogicalCategory.CAMPAIGN_IMAGE) is None

    def test_one_byte_over_is_rejected(self, sized_file):
        policy = UploadPolicy()
        descriptor = sized_file("edge.png", DEFAULT_MAX_BYTES + 1)
        rejection = policy.check(descriptor, LogicalCategory.CAMPAIGN_IMAGE)
        assert isinstance(rejection, TooLarge)
        assert rejection.ceiling == DEFAULT_MAX_BYTES
        assert rejection.byte_size == DEFAULT_MAX_BYTES + 1

    def test_zero_byte_file_passes(self, sized_file):
        assert UploadPolicy().check(sized_file("empty.png", 0), LogicalCategory.BLOG_IMAGE) is None


class TestContentTypes:
    """Allow-lists per category."""

    def test_pdf_rejected_for_profile_picture(self, sized_file):
        rejection = UploadPolicy().check(
            sized_file("cv.pdf", 1024, "application/pdf"),
            LogicalCategory.PROFILE_PICTURE,
        )
        assert isinstance(rejection, UnsupportedType)
        assert rejection.content_type == "application/pdf"
        assert "image/png" in rejection.allowed

    def test_pdf_accepted_for_documents(self, sized_file):
        policy = UploadPolicy()
        pdf = sized_file("passport.pdf", 1024, "application/pdf")
        for category in (
            LogicalCategory.DOCUMENT_PASSPORT,
            LogicalCategory.DOCUMENT_LICENSE,
            LogicalCategory.DOCUMENT_CITIZENSHIP,
            LogicalCategory.BANK_DOCUMENT,
            LogicalCategory.CAMPAIGN_VERIFICATION,
        ):
            assert policy.check(pdf, category) is None

    def test_webp_not_a_document_type(self, sized_file):
        rejection = UploadPolicy().check(
            sized_file("scan.webp", 1024, "image/webp"), LogicalCategory.BANK_DOCUMENT
        )
        assert isinstance(rejection, UnsupportedType)

    def test_content_type_parameters_and_case_ignored(self, sized_file):
        descriptor = sized_file("a.png", 10, "Image/PNG; charset=binary")
        assert UploadPolicy().check(descriptor, LogicalCategory.PROFILE_PICTURE) is None

    def test_normalize_content_type(self):
        assert normalize_content_type(" IMAGE/JPEG ;q=1") == "image/jpeg"


class TestRuleOrder:
    """Size is checked before type."""

    def test_oversized_and_wrong_type_reports_too_large(self, sized_file):
        rejection = UploadPolicy().check(
            sized_file("huge.exe", 20 * MIB, "application/x-msdownload"),
            LogicalCategory.CAMPAIGN_IMAGE,
        )
        assert isinstance(rejection, TooLarge)

    def test_validate_raises(self, sized_file):
        with pytest.raises(TooLarge):
            UploadPolicy().validate(
                sized_file("huge.png", 20 * MIB), LogicalCategory.CAMPAIGN_IMAGE
            )

    def test_custom_rules(self, sized_file):
        policy = UploadPolicy({LogicalCategory.BLOG_IMAGE: CategoryRule(100, ("image/png",))})
        assert isinstance(
            policy.check(sized_file("a.png", 101), LogicalCategory.BLOG_IMAGE), TooLarge
        )
        with pytest.raises(KeyError):
            policy.check(sized_file("a.png", 1), LogicalCategory.BLOG_COVER)


class TestFileDescriptor:
    """FileDescriptor construction helpers."""

    def test_negative_size_rejected(self, sized_file):
        with pytest.raises(ValueError):
            sized_file("bad.png", -1)

    def test_from_path_guesses_type(self, tmp_path):
        path = tmp_path / "cover.jpg"
        path.write_bytes(b"\xff\xd8\xff" + b"\0" * 97)
        descriptor = FileDescriptor.from_path(path)
        try:
            assert descriptor.name == "cover.jpg"
            assert descriptor.byte_size == 100
            assert descriptor.content_type == "image/jpeg"
        finally:
            descriptor.close()

    def test_from_path_unknown_extension(self, tmp_path):
        path = tmp_path / "blob.zzz-unknown"
        path.write_bytes(b"x")
        descriptor = FileDescriptor.from_path(path)
        descriptor.close()
        assert descriptor.content_type == "application/octet-stream"
