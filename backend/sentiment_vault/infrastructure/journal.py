"""
TransitionJournal — tamper-evident log of RecordStore mutations.

Every record creation and verification-state transition is appended as a
hash-chained entry, and a binary Merkle tree over the entry hashes gives
a single root that changes if any entry is altered.

    entry_hash  = SHA-256(canonical JSON of the entry, incl. previous_hash)
    merkle_root = MerkleRoot(entry_hash_0 … entry_hash_n)

Security Invariants:
    - Plaintexts are NEVER journaled. A Verified transition stores only
      keccak256("<record_id>:<clear_value>").
    - Entries are immutable; the journal is append-only.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from web3 import Web3

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def value_commitment(record_id: str, clear_value: int) -> str:
    """keccak256 commitment to a disclosed value, safe to journal."""
    return Web3.to_hex(Web3.keccak(text=f"{record_id}:{clear_value}"))


@dataclass(frozen=True)
class JournalEntry:
    index: int
    timestamp: str  # ISO-8601 UTC
    record_id: str
    from_state: str  # "" for creation
    to_state: str
    value_commitment: str
    previous_hash: str
    entry_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IntegrityReport(BaseModel):
    """Result of a full journal integrity verification."""
    is_valid: bool = True
    chain_length: int = 0
    merkle_root: str = GENESIS_HASH
    first_invalid_index: int = -1
    error_message: str = ""
    verified_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


def merkle_root(leaves: List[str]) -> str:
    """
    Build the Merkle tree bottom-up and return its root.

    An odd node at any level is paired with itself.
    """
    if not leaves:
        return GENESIS_HASH
    level = list(leaves)
    while len(level) > 1:
        level = [
            _sha256(level[i] + (level[i + 1] if i + 1 < len(level) else level[i]))
            for i in range(0, len(level), 2)
        ]
    return level[0]


def _compute_entry_hash(
    index: int,
    timestamp: str,
    record_id: str,
    from_state: str,
    to_state: str,
    value_commitment: str,
    previous_hash: str,
) -> str:
    canonical = json.dumps(
        {
            "index": index,
            "timestamp": timestamp,
            "record_id": record_id,
            "from_state": from_state,
            "to_state": to_state,
            "value_commitment": value_commitment,
            "previous_hash": previous_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return _sha256(canonical)


class TransitionJournal:
    """
    Append-only, hash-chained journal with a Merkle root.

    Entries are built with `prepare` and only become part of the chain on
    `commit`, so the owner can persist first and commit after.
    """

    def __init__(self, entries: Optional[Iterable[JournalEntry]] = None) -> None:
        self._entries: List[JournalEntry] = list(entries or [])
        self._root = merkle_root([e.entry_hash for e in self._entries])

    @property
    def entries(self) -> List[JournalEntry]:
        return list(self._entries)

    @property
    def merkle_root(self) -> str:
        return self._root

    def __len__(self) -> int:
        return len(self._entries)

    def prepare(
        self,
        record_id: str,
        from_state: str,
        to_state: str,
        value_commitment: str = "",
    ) -> JournalEntry:
        """Build the next entry without appending it."""
        index = len(self._entries)
        previous_hash = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
        timestamp = datetime.now(timezone.utc).isoformat()
        entry_hash = _compute_entry_hash(
            index, timestamp, record_id, from_state, to_state,
            value_commitment, previous_hash,
        )
        return JournalEntry(
            index=index,
            timestamp=timestamp,
            record_id=record_id,
            from_state=from_state,
            to_state=to_state,
            value_commitment=value_commitment,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )

    def commit(self, entry: JournalEntry) -> str:
        """Append a prepared entry and return the new Merkle root."""
        if entry.index != len(self._entries):
            raise ValueError(
                f"Stale journal entry #{entry.index}; chain length is {len(self._entries)}"
            )
        self._entries.append(entry)
        self._root = merkle_root([e.entry_hash for e in self._entries])
        logger.debug(
            f"[JOURNAL] Entry #{entry.index} {entry.record_id} "
            f"{entry.from_state or '∅'}→{entry.to_state} root={self._root[:16]}..."
        )
        return self._root

    def verify_integrity(self) -> IntegrityReport:
        """Recompute every entry hash, the chain linkage and the Merkle root."""
        hashes: List[str] = []
        for i, entry in enumerate(self._entries):
            expected_prev = GENESIS_HASH if i == 0 else self._entries[i - 1].entry_hash
            if entry.previous_hash != expected_prev:
                return IntegrityReport(
                    is_valid=False,
                    chain_length=len(self._entries),
                    merkle_root=self._root,
                    first_invalid_index=i,
                    error_message=f"Chain break at index {i}: previous_hash mismatch",
                )
            recomputed = _compute_entry_hash(
                entry.index, entry.timestamp, entry.record_id, entry.from_state,
                entry.to_state, entry.value_commitment, entry.previous_hash,
            )
            if recomputed != entry.entry_hash:
                return IntegrityReport(
                    is_valid=False,
                    chain_length=len(self._entries),
                    merkle_root=self._root,
                    first_invalid_index=i,
                    error_message=f"Hash mismatch at index {i}: entry tampered",
                )
            hashes.append(entry.entry_hash)

        if merkle_root(hashes) != self._root:
            return IntegrityReport(
                is_valid=False,
                chain_length=len(self._entries),
                merkle_root=self._root,
                error_message="Merkle root mismatch: journal tampered",
            )

        return IntegrityReport(
            is_valid=True,
            chain_length=len(self._entries),
            merkle_root=self._root,
        )
