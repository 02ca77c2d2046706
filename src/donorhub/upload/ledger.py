"""Durable record of objects stored but never confirmed with the origin.

An object whose bytes reached storage but whose confirmation handshake
failed, or whose task was cancelled mid-confirmation, is invisible to the
origin's domain records.  Such keys are written here so a later
``donorhub reconcile`` run can confirm them instead of leaving them
orphaned.

Each write method commits immediately; no transaction is held across an
``await`` boundary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from donorhub.models import LogicalCategory
from donorhub.upload.confirmation import ConfirmationHandshake
from donorhub.upload.exceptions import UploadError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS unconfirmed_objects (
    destination_key TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    original_name TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    reason TEXT,
    recorded_at TEXT NOT NULL
)
"""


class UnconfirmedObjectLedger:
    """Async SQLite ledger of stored-but-unconfirmed objects.

    Usage::

        async with UnconfirmedObjectLedger("data/unconfirmed.db") as ledger:
            await ledger.record("users/profile-pictures/1-2.png", category, "me.png")
            pending = await ledger.pending()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection and create the table if needed."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> UnconfirmedObjectLedger:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record(
        self,
        destination_key: str,
        category: LogicalCategory,
        original_name: str,
        metadata: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> None:
        """Insert or refresh the entry for *destination_key*."""
        db = self._ensure_connected()
        await db.execute(
            """INSERT INTO unconfirmed_objects
                   (destination_key, category, original_name, metadata_json,
                    reason, recorded_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(destination_key) DO UPDATE SET
                   reason = excluded.reason,
                   recorded_at = excluded.recorded_at""",
            (
                destination_key,
                category.value,
                original_name,
                json.dumps(metadata or {}),
                reason,
                self._now_iso(),
            ),
        )
        await db.commit()

    async def resolve(self, destination_key: str) -> bool:
        """Remove *destination_key*; returns ``True`` if an entry existed."""
        db = self._ensure_connected()
        cursor = await db.execute(
            "DELETE FROM unconfirmed_objects WHERE destination_key = ?",
            (destination_key,),
        )
        await db.commit()
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def pending(self) -> list[dict[str, Any]]:
        """Return all unconfirmed entries, oldest first."""
        db = self._ensure_connected()
        cursor = await db.execute(
            """SELECT destination_key, category, original_name, metadata_json,
                      reason, recorded_at
               FROM unconfirmed_objects
               ORDER BY recorded_at"""
        )
        rows = await cursor.fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            entry["metadata"] = json.loads(entry.pop("metadata_json") or "{}")
            entries.append(entry)
        return entries


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass
class ReconcileResult:
    """Summary of a reconciliation run.

    Attributes:
        confirmed: Keys the origin accepted and that were removed.
        still_pending: Keys that failed again and remain in the ledger.
        errors: Human-readable description per failed key.
    """

    confirmed: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


async def reconcile_unconfirmed(
    ledger: UnconfirmedObjectLedger, handshake: ConfirmationHandshake
) -> ReconcileResult:
    """Re-run the confirmation handshake for every ledger entry.

    Entries confirmed by the origin are removed.  Failures are reported in
    the result and left in place for the next run.
    """
    result = ReconcileResult()
    for entry in await ledger.pending():
        key = entry["destination_key"]
        try:
            category = LogicalCategory(entry["category"])
            await handshake.confirm(key, category, entry["metadata"])
        except (UploadError, ValueError) as exc:
            logger.warning("Reconcile: %s still unconfirmed: %s", key, exc)
            result.still_pending.append(key)
            result.errors.append(f"{key}: {exc}")
            continue
        await ledger.resolve(key)
        result.confirmed.append(key)
        logger.info("Reconcile: confirmed %s", key)
    return result
