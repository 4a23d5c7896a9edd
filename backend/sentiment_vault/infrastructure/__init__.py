"""
SENTIMENT-VAULT Infrastructure Module.

Exports the persistence and ledger components:
    - RecordStore: authoritative record collection with legal transitions
    - TransitionJournal: hash-chained, Merkle-rooted mutation log
    - InMemoryLedgerContract / Web3LedgerContract: ledger contract clients
"""

from sentiment_vault.infrastructure.journal import (
    IntegrityReport,
    JournalEntry,
    TransitionJournal,
    value_commitment,
)
from sentiment_vault.infrastructure.ledger.contract import (
    InMemoryLedgerContract,
    LedgerContract,
)
from sentiment_vault.infrastructure.ledger.web3_contract import Web3LedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore

__all__ = [
    "IntegrityReport",
    "JournalEntry",
    "TransitionJournal",
    "value_commitment",
    "InMemoryLedgerContract",
    "LedgerContract",
    "Web3LedgerContract",
    "RecordStore",
]
