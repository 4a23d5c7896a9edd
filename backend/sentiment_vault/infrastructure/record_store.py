"""
RecordStore — the ledger-side source of truth for sentiment records.

Append-only collection of Records plus their mutable verification state.
All writers go through the guarded transition operations; nothing else
may change `verification_state` or `clear_value`.

Transition Guards:
    ┌──────────────────────────┬──────────────────────────────────────────┐
    │ Operation                │ Allowed from                             │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │ set_verification_pending │ Unverified, VerificationFailed,          │
    │                          │ VerificationPending (stuck retry)        │
    │ set_verified             │ Unverified, VerificationPending,         │
    │                          │ Verified with the same value (no-op)     │
    │ set_verification_failed  │ VerificationPending,                     │
    │                          │ VerificationFailed (no-op)               │
    └──────────────────────────┴──────────────────────────────────────────┘
    Anything else raises InvalidTransition.

Durability:
    With a snapshot path configured, every mutation writes the complete
    store (records + journal) to a temp file and atomically replaces the
    snapshot before the in-memory state changes. A failed write leaves
    both the file and memory untouched. A snapshot whose journal fails
    its integrity check is refused with CorruptSnapshot.

Thread Safety:
    One re-entrant lock serialises every mutation and read. Operations
    never await, so under asyncio each call is atomic.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from typing import Callable, Dict, List, Optional

from sentiment_vault.core.errors import (
    CorruptSnapshot,
    DuplicateId,
    InvalidTransition,
    NotFound,
)
from sentiment_vault.infrastructure.journal import (
    IntegrityReport,
    JournalEntry,
    TransitionJournal,
    value_commitment,
)
from sentiment_vault.schemas.record import Record, VerificationState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
_MIN_TICK = 1e-6  # created_at strictly increases by at least this much

_PENDING_FROM = {
    VerificationState.UNVERIFIED,
    VerificationState.FAILED,
    VerificationState.PENDING,
}
_VERIFIED_FROM = {
    VerificationState.UNVERIFIED,
    VerificationState.PENDING,
}


class RecordStore:
    """
    Insertion-ordered record collection with guarded state transitions.

    Usage:
        store = RecordStore()
        store.append(record)
        store.set_verification_pending(record.id)
        store.set_verified(record.id, 3)
        [r.id for r in store.list_all()]
    """

    def __init__(
        self,
        path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path
        self._clock = clock
        self._lock = threading.RLock()
        self._records: Dict[str, Record] = {}
        self._journal = TransitionJournal()
        self._last_created_at = 0.0

        if path and os.path.exists(path):
            self._load(path)

    # ── Read Interface ──

    def get(self, record_id: str) -> Record:
        with self._lock:
            record = self._records.get(record_id)
        if record is None:
            raise NotFound(record_id)
        return record

    def contains(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._records

    def list_all(self) -> List[Record]:
        """Snapshot of every record in insertion order."""
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def journal(self) -> TransitionJournal:
        return self._journal

    def verify_integrity(self) -> IntegrityReport:
        with self._lock:
            return self._journal.verify_integrity()

    # ── Write Interface ──

    def append(self, record: Record) -> str:
        """
        Commit a new record and return its id.

        `created_at` is assigned here and strictly increases across
        appends. The stored state is always Unverified or Verified.

        Raises:
            DuplicateId: a record with this id already exists.
        """
        with self._lock:
            if record.id in self._records:
                raise DuplicateId(record.id)
            if record.verification_state not in (
                VerificationState.UNVERIFIED, VerificationState.VERIFIED,
            ):
                raise InvalidTransition(
                    record.id, "(new)", record.verification_state.value,
                )

            created_at = max(self._clock(), self._last_created_at + _MIN_TICK)
            committed = record.model_copy(update={"created_at": created_at})

            entry = self._journal.prepare(
                record.id,
                "",
                committed.verification_state.value,
                value_commitment(record.id, committed.clear_value)
                if committed.is_verified else "",
            )
            self._commit(committed, entry)
            self._last_created_at = created_at

        logger.info(
            f"[STORE] Record {record.id} appended, "
            f"handle={record.ciphertext_handle[:18]}... total={len(self)}"
        )
        return record.id

    def set_verification_pending(self, record_id: str) -> Record:
        with self._lock:
            record = self.get(record_id)
            self._guard(record, VerificationState.PENDING, _PENDING_FROM)
            return self._transition(record, VerificationState.PENDING)

    def set_verified(
        self,
        record_id: str,
        clear_value: int,
        attestation_tx: str = "",
    ) -> Record:
        """
        Attach the disclosed value and mark the record Verified.

        Idempotent: on an already-Verified record with the same value this
        returns the stored record without mutation.
        """
        with self._lock:
            record = self.get(record_id)
            if record.is_verified:
                if record.clear_value != clear_value:
                    logger.error(
                        f"[STORE] Conflicting disclosure for {record_id}: "
                        f"stored value differs from new value"
                    )
                    raise InvalidTransition(
                        record_id,
                        record.verification_state.value,
                        VerificationState.VERIFIED.value,
                    )
                return record

            self._guard(record, VerificationState.VERIFIED, _VERIFIED_FROM)
            return self._transition(
                record,
                VerificationState.VERIFIED,
                clear_value=clear_value,
                attestation_tx=attestation_tx,
            )

    def set_verification_failed(self, record_id: str) -> Record:
        with self._lock:
            record = self.get(record_id)
            if record.verification_state == VerificationState.FAILED:
                return record
            self._guard(
                record, VerificationState.FAILED, {VerificationState.PENDING},
            )
            return self._transition(record, VerificationState.FAILED)

    # ── Internals ──

    def _guard(self, record: Record, target: VerificationState, allowed: set) -> None:
        if record.verification_state not in allowed:
            logger.error(
                f"[STORE] Refused transition {record.id}: "
                f"{record.verification_state.value} → {target.value}"
            )
            raise InvalidTransition(
                record.id, record.verification_state.value, target.value,
            )

    def _transition(
        self,
        record: Record,
        target: VerificationState,
        clear_value: Optional[int] = None,
        attestation_tx: str = "",
    ) -> Record:
        updated = record.model_copy(update={
            "verification_state": target,
            "clear_value": clear_value,
            "attestation_tx": attestation_tx or record.attestation_tx,
        })
        entry = self._journal.prepare(
            record.id,
            record.verification_state.value,
            target.value,
            value_commitment(record.id, clear_value) if clear_value is not None else "",
        )
        self._commit(updated, entry)
        logger.debug(
            f"[STORE] {record.id}: {record.verification_state.value} → {target.value}"
        )
        return updated

    def _commit(self, record: Record, entry: JournalEntry) -> None:
        records = dict(self._records)
        records[record.id] = record
        if self._path:
            self._write_snapshot(records, self._journal.entries + [entry])
        self._journal.commit(entry)
        self._records = records

    def _write_snapshot(self, records: Dict[str, Record], entries: List[JournalEntry]) -> None:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "records": [r.model_dump(mode="json") for r in records.values()],
            "journal": [e.to_dict() for e in entries],
        }
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=directory, delete=False, suffix=".tmp", encoding="utf-8",
        ) as tmp:
            json.dump(snapshot, tmp, separators=(",", ":"))
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = tmp.name
        try:
            os.replace(tmp_path, self._path)
        except OSError:
            os.unlink(tmp_path)
            raise

    def _load(self, path: str) -> None:
        with open(path, "r", encoding="utf-8") as f:
            snapshot = json.load(f)

        for raw in snapshot.get("records", []):
            record = Record.model_validate(raw)
            self._records[record.id] = record
            self._last_created_at = max(self._last_created_at, record.created_at)

        self._journal = TransitionJournal(
            JournalEntry(**raw) for raw in snapshot.get("journal", [])
        )
        report = self._journal.verify_integrity()
        if not report.is_valid:
            logger.error(f"[STORE] Snapshot journal failed integrity check: {report.error_message}")
            raise CorruptSnapshot(path, report.first_invalid_index, report.error_message)

        logger.info(f"[STORE] Loaded {len(self._records)} records from {path}")
