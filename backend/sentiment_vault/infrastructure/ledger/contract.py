"""
Sentiment Ledger Contract — interface and in-process implementation.

The ledger surface the core talks to:

    create_record(id, name, handle, proof, v1, v2, description, sender) -> tx
    get_record(id)                                                      -> data
    get_encrypted_handle(id)                                            -> handle
    attest_decryption(id, clear_values_encoded, proof, sender)          -> tx
    get_all_record_ids()                                                -> [id]
    is_available()                                                      -> bool

`InMemoryLedgerContract` is the Python equivalent of the deployed
Solidity contract. It enforces the same rules in process:

    ┌──────────────────────────┬───────────────────────────────────────┐
    │ create_record            │ revert if id exists                   │
    │                          │ revert if input proof invalid         │
    │ attest_decryption        │ revert "Data already verified"        │
    │                          │ revert if decryption proof invalid    │
    └──────────────────────────┴───────────────────────────────────────┘

Each call is atomic: every check and write happens after the simulated
transaction latency, with no suspension in between.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol

from web3 import Web3

from sentiment_vault.core.crypto.capability import ProofVerifier
from sentiment_vault.core.crypto.codec import decode_clear_values
from sentiment_vault.core.errors import (
    AlreadyVerified,
    ContractRevertError,
    NetworkError,
)
from sentiment_vault.schemas.record import LedgerRecordData

logger = logging.getLogger(__name__)


class LedgerContract(Protocol):
    address: str

    async def create_record(
        self,
        record_id: str,
        name: str,
        encrypted_value: str,
        input_proof: str,
        public_value1: int,
        public_value2: int,
        description: str,
        sender: str,
    ) -> str:
        ...

    async def get_record(self, record_id: str) -> LedgerRecordData:
        ...

    async def get_encrypted_handle(self, record_id: str) -> str:
        ...

    async def attest_decryption(
        self,
        record_id: str,
        abi_encoded_clear_values: str,
        decryption_proof: str,
        sender: str,
    ) -> str:
        ...

    async def get_all_record_ids(self) -> List[str]:
        ...

    async def is_available(self) -> bool:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# IN-PROCESS CONTRACT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class _StoredRecord:
    name: str
    encrypted_value: str
    public_value1: int
    public_value2: int
    description: str
    creator: str
    timestamp: float
    is_verified: bool = False
    decrypted_value: int = 0


class InMemoryLedgerContract:
    """
    In-process sentiment ledger contract.

    Args:
        address: Contract address; also the encryption context that
            ciphertexts must be bound to.
        proof_verifier: Checks input and decryption proofs (the
            contract's KMS signature check).
        latency_seconds: Simulated transaction latency.
    """

    def __init__(
        self,
        address: str,
        proof_verifier: ProofVerifier,
        latency_seconds: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.address = Web3.to_checksum_address(address)
        self._verifier = proof_verifier
        self._latency = latency_seconds
        self._clock = clock
        self._records: Dict[str, _StoredRecord] = {}
        self._tx_count = 0
        self.available = True

    async def create_record(
        self,
        record_id: str,
        name: str,
        encrypted_value: str,
        input_proof: str,
        public_value1: int,
        public_value2: int,
        description: str,
        sender: str,
    ) -> str:
        await self._block()
        if record_id in self._records:
            raise ContractRevertError("Record already exists", {"record_id": record_id})
        if not self._verifier.verify_input_proof(
            encrypted_value, input_proof, self.address, sender,
        ):
            raise ContractRevertError("Invalid input proof", {"record_id": record_id})

        self._records[record_id] = _StoredRecord(
            name=name,
            encrypted_value=encrypted_value,
            public_value1=public_value1,
            public_value2=public_value2,
            description=description,
            creator=sender,
            timestamp=self._clock(),
        )
        return self._tx_hash("createRecord", record_id)

    async def get_record(self, record_id: str) -> LedgerRecordData:
        await self._block()
        stored = self._require(record_id)
        return LedgerRecordData(
            id=record_id,
            name=stored.name,
            encrypted_value=stored.encrypted_value,
            public_value1=stored.public_value1,
            public_value2=stored.public_value2,
            description=stored.description,
            creator=stored.creator,
            timestamp=stored.timestamp,
            is_verified=stored.is_verified,
            decrypted_value=stored.decrypted_value,
        )

    async def get_encrypted_handle(self, record_id: str) -> str:
        await self._block()
        return self._require(record_id).encrypted_value

    async def attest_decryption(
        self,
        record_id: str,
        abi_encoded_clear_values: str,
        decryption_proof: str,
        sender: str,
    ) -> str:
        await self._block()
        stored = self._require(record_id)
        if stored.is_verified:
            raise AlreadyVerified(record_id)
        if not self._verifier.verify_decryption_proof(
            [stored.encrypted_value], abi_encoded_clear_values, decryption_proof,
        ):
            raise ContractRevertError("Invalid decryption proof", {"record_id": record_id})

        (value,) = decode_clear_values(abi_encoded_clear_values, 1)
        stored.decrypted_value = value
        stored.is_verified = True
        logger.info(f"[LEDGER] Decryption attested for {record_id} by {sender}")
        return self._tx_hash("verifyDecryption", record_id)

    async def get_all_record_ids(self) -> List[str]:
        await self._block()
        return list(self._records)

    async def is_available(self) -> bool:
        if not self.available:
            return False
        await asyncio.sleep(self._latency)
        return True

    # ── Internals ──

    async def _block(self) -> None:
        if not self.available:
            raise NetworkError("Ledger RPC unreachable")
        await asyncio.sleep(self._latency)

    def _require(self, record_id: str) -> _StoredRecord:
        stored = self._records.get(record_id)
        if stored is None:
            raise ContractRevertError("Record does not exist", {"record_id": record_id})
        return stored

    def _tx_hash(self, method: str, record_id: str) -> str:
        self._tx_count += 1
        return Web3.to_hex(
            Web3.keccak(text=f"{self.address}:{method}:{record_id}:{self._tx_count}")
        )
