"""
Confidential-encryption capability interface.

The core consumes encryption and threshold decryption as an opaque
external capability. Any backend (a relayer client, a KMS, the in-process
simulator) plugs in by implementing `ConfidentialCapability`.

    encrypt(context, identity, plaintext)          -> EncryptedInput
    decrypt_and_prove(handles, context, attest)    -> DecryptionResult

`attest` is the continuation the capability calls once it holds the
clear values and their decryption proof; it submits the attestation to
the ledger and returns the transaction hash. If `attest` raises, the
whole disclosure fails with that exception.

Failure conventions expected from implementations:
    - ValueError        plaintext not representable by the scheme
    - ConnectionError   capability unreachable (transient)
    - DecryptionProofError  decryption or proof generation failed
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, Sequence

from sentiment_vault.schemas.record import DecryptionResult, EncryptedInput


# (abi_encoded_clear_values, decryption_proof) -> attestation tx hash
AttestCallback = Callable[[str, str], Awaitable[str]]


class DecryptionProofError(Exception):
    """The oracle could not decrypt a handle or prove the decryption."""


class ConfidentialCapability(Protocol):
    async def encrypt(
        self,
        context: str,
        identity: str,
        plaintext: int,
    ) -> EncryptedInput:
        ...

    async def decrypt_and_prove(
        self,
        handles: Sequence[str],
        context: str,
        attest: AttestCallback,
    ) -> DecryptionResult:
        ...


class ProofVerifier(Protocol):
    """Checks proofs on the ledger side (what the contract's KMS check does)."""

    def verify_input_proof(
        self,
        handle: str,
        proof: str,
        context: str,
        identity: str,
    ) -> bool:
        ...

    def verify_decryption_proof(
        self,
        handles: Sequence[str],
        abi_encoded_clear_values: str,
        proof: str,
    ) -> bool:
        ...
