import asyncio
from typing import Optional, Sequence

import pytest

from sentiment_vault.core.crypto.capability import AttestCallback
from sentiment_vault.core.crypto.simulated import SimulatedConfidentialCapability
from sentiment_vault.core.security.session import identity_from_address
from sentiment_vault.infrastructure.ledger.contract import InMemoryLedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore
from sentiment_vault.schemas.record import DecryptionResult, EncryptedInput
from sentiment_vault.services.facade import (
    DEFAULT_MEMORY_CONTRACT_ADDRESS,
    SentimentVaultService,
)
from sentiment_vault.services.scoring import FixedScorer

ALICE_ADDRESS = "0x" + "a1" * 20
BOB_ADDRESS = "0x" + "b2" * 20
CONTRACT_ADDRESS = DEFAULT_MEMORY_CONTRACT_ADDRESS

ALICE = identity_from_address(ALICE_ADDRESS)
BOB = identity_from_address(BOB_ADDRESS)


class ControlledCapability:
    """
    Wraps the simulated capability. Counts calls and can be told to hang
    or fail the next decryption.
    """

    def __init__(self, inner: SimulatedConfidentialCapability):
        self.inner = inner
        self.encrypt_calls = 0
        self.decrypt_calls = 0
        self.hang_decrypt = False
        self.fail_decrypt: Optional[Exception] = None

    async def encrypt(self, context: str, identity: str, plaintext: int) -> EncryptedInput:
        self.encrypt_calls += 1
        return await self.inner.encrypt(context, identity, plaintext)

    async def decrypt_and_prove(
        self,
        handles: Sequence[str],
        context: str,
        attest: AttestCallback,
    ) -> DecryptionResult:
        self.decrypt_calls += 1
        if self.fail_decrypt is not None:
            raise self.fail_decrypt
        if self.hang_decrypt:
            await asyncio.sleep(3600)
        return await self.inner.decrypt_and_prove(handles, context, attest)

    def verify_input_proof(self, handle, proof, context, identity) -> bool:
        return self.inner.verify_input_proof(handle, proof, context, identity)

    def verify_decryption_proof(self, handles, encoded, proof) -> bool:
        return self.inner.verify_decryption_proof(handles, encoded, proof)


@pytest.fixture
def capability():
    return ControlledCapability(SimulatedConfidentialCapability(key="test-capability-key"))


@pytest.fixture
def ledger(capability):
    return InMemoryLedgerContract(CONTRACT_ADDRESS, capability)


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def make_service(store, ledger, capability):
    """Factory: a service over the shared fixtures with a fixed score."""
    def _make(category: int = 3, confidence: int = 80, **kwargs) -> SentimentVaultService:
        return SentimentVaultService(
            store=store,
            ledger=ledger,
            capability=capability,
            scorer=FixedScorer(category, confidence),
            **kwargs,
        )
    return _make


@pytest.fixture
def service(make_service):
    return make_service()
