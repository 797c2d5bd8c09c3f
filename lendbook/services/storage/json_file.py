"""
JSON File Storage Implementation

DESIGN DECISION: The surrounding application keeps its whole database as
one JSON document of named collections (accounts, persons, lendings,
accountTransactions, personTransactions, plus its own tasks, tickets, ...).
This store reads and writes that document directly:
1. Field names and enum values are kept exactly as stored
2. Collections Lendbook does not know about are written back untouched
3. Every write replaces the file atomically (temp file + rename)
4. The in-memory state only changes once the file write has succeeded

TRADEOFFS:
- The whole document is rewritten on every write (fine for a dashboard)
- No cross-process locking; one writer at a time is assumed
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog

from lendbook.config import get_settings
from lendbook.models.audit import AuditEvent
from lendbook.models.ledger import LedgerSnapshot
from lendbook.services.storage.interface import StorageError
from lendbook.services.storage.memory import InMemoryEventStore

logger = structlog.get_logger(__name__)


class JsonFileEventStore(InMemoryEventStore):
    """
    Event store persisted to a JSON document.

    The file is read once at construction; a missing file starts an empty
    ledger and is created on the first write.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        audit_collection: Optional[str] = None,
    ):
        settings = get_settings().store
        resolved = path or settings.path
        if resolved is None:
            raise StorageError("No store path configured (set LENDBOOK_STORE_PATH)")

        self._path = Path(resolved)
        self._audit_collection = audit_collection or settings.history_collection

        snapshot, audit_events = self._load()
        super().__init__(snapshot=snapshot, audit_events=audit_events)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> tuple[LedgerSnapshot, list[AuditEvent]]:
        if not self._path.exists():
            logger.info("store_file_missing", path=str(self._path))
            return LedgerSnapshot(), []

        try:
            with self._path.open(encoding="utf-8") as fh:
                records = json.load(fh)
        except json.JSONDecodeError as e:
            raise StorageError(f"Store file is not valid JSON: {self._path}: {e}")
        except OSError as e:
            raise StorageError(f"Could not read store file {self._path}: {e}")

        if not isinstance(records, dict):
            raise StorageError(f"Store file must hold a JSON object: {self._path}")

        audit_rows = records.pop(self._audit_collection, [])
        snapshot = LedgerSnapshot.from_records(records)
        audit_events = [AuditEvent.from_record(row) for row in audit_rows]

        logger.info(
            "store_file_loaded",
            path=str(self._path),
            lendings=len(snapshot.lendings),
            transactions=len(snapshot.transfers),
            net_flows=len(snapshot.net_flows),
        )
        return snapshot, audit_events

    def _persist(self, snapshot: LedgerSnapshot, audit_events: list[AuditEvent]) -> None:
        records = snapshot.to_records()
        records[self._audit_collection] = [e.to_record() for e in audit_events]

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
        except OSError as e:
            raise StorageError(f"Could not write store file {self._path}: {e}")

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Could not write store file {self._path}: {e}")
