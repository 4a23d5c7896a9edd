"""
Simulated Confidential Capability — in-process stand-in for an FHE relayer.

Implements the `ConfidentialCapability` and `ProofVerifier` contracts with
the same observable behaviour as a threshold-decryption network, so that
the protocol core can run end-to-end without a relayer:

    encrypt:
        handle = keccak256(context ‖ identity ‖ nonce)
        proof  = HMAC-SHA256(key, "input" ‖ handle ‖ context ‖ identity)

    decrypt_and_prove:
        clear  = abi.encode(uint256[...] values)
        proof  = HMAC-SHA256(key, "decrypt" ‖ handles ‖ clear)
        attest(clear, proof)   ← on-chain verification continuation

Security Invariants:
    - A handle decrypts only under the context it was encrypted for.
    - Proofs are bound to the exact handle list and encoded values.
    - Plaintexts never leave this object except through decrypt_and_prove.

NOT a cryptosystem: the "ciphertext" is a lookup key into process memory.
Use it for development and tests only.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, List, Sequence

from web3 import Web3

from sentiment_vault.core.crypto.capability import (
    AttestCallback,
    DecryptionProofError,
)
from sentiment_vault.core.crypto.codec import encode_clear_values
from sentiment_vault.schemas.record import DecryptionResult, EncryptedInput

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

DEFAULT_BIT_WIDTH = 8  # euint8
NONCE_BYTES = 16


@dataclass(frozen=True)
class _Ciphertext:
    plaintext: int
    context: str
    identity: str


def _normalize(value: str) -> str:
    return value.strip().lower()


# ═══════════════════════════════════════════════════════════════════════════════
# SIMULATED CAPABILITY
# ═══════════════════════════════════════════════════════════════════════════════

class SimulatedConfidentialCapability:
    """
    In-process confidential-encryption capability.

    Usage:
        capability = SimulatedConfidentialCapability(key="dev-key")
        enc = await capability.encrypt(contract, wallet, 3)
        result = await capability.decrypt_and_prove([enc.handle], contract, attest)
        assert result.clear_values[enc.handle] == 3

    Set `available = False` to simulate an unreachable relayer.
    """

    def __init__(
        self,
        key: str,
        bit_width: int = DEFAULT_BIT_WIDTH,
        latency_seconds: float = 0.0,
    ) -> None:
        self._key = key.encode("utf-8")
        self._max_plaintext = (1 << bit_width) - 1
        self._latency = latency_seconds
        self._ciphertexts: Dict[str, _Ciphertext] = {}
        self.available = True

    # ── Capability interface ──

    async def encrypt(
        self,
        context: str,
        identity: str,
        plaintext: int,
    ) -> EncryptedInput:
        await self._round_trip()
        if not 0 <= plaintext <= self._max_plaintext:
            raise ValueError(
                f"Plaintext {plaintext} not representable in "
                f"[0, {self._max_plaintext}]"
            )

        context_n, identity_n = _normalize(context), _normalize(identity)
        nonce = secrets.token_bytes(NONCE_BYTES)
        handle = Web3.to_hex(
            Web3.keccak(context_n.encode() + identity_n.encode() + nonce)
        )
        self._ciphertexts[handle] = _Ciphertext(plaintext, context_n, identity_n)

        return EncryptedInput(
            handle=handle,
            proof=self._sign("input", handle, context_n, identity_n),
        )

    async def decrypt_and_prove(
        self,
        handles: Sequence[str],
        context: str,
        attest: AttestCallback,
    ) -> DecryptionResult:
        await self._round_trip()
        if not handles:
            raise DecryptionProofError("No handles requested")

        context_n = _normalize(context)
        values: List[int] = []
        for handle in handles:
            ct = self._ciphertexts.get(handle)
            if ct is None:
                raise DecryptionProofError(f"Unknown handle {handle[:18]}...")
            if ct.context != context_n:
                raise DecryptionProofError(
                    f"Handle {handle[:18]}... is not bound to context {context}"
                )
            values.append(ct.plaintext)

        encoded = encode_clear_values(values)
        proof = self._sign("decrypt", ",".join(handles), encoded)
        logger.debug(f"[GATEWAY] Decrypted {len(handles)} handle(s), submitting attestation")

        tx_hash = await attest(encoded, proof)

        return DecryptionResult(
            clear_values=dict(zip(handles, values)),
            abi_encoded_clear_values=encoded,
            decryption_proof=proof,
            attestation_tx=tx_hash or "",
        )

    # ── Proof verification (ledger side) ──

    def verify_input_proof(
        self,
        handle: str,
        proof: str,
        context: str,
        identity: str,
    ) -> bool:
        expected = self._sign("input", handle, _normalize(context), _normalize(identity))
        return hmac.compare_digest(expected, proof)

    def verify_decryption_proof(
        self,
        handles: Sequence[str],
        abi_encoded_clear_values: str,
        proof: str,
    ) -> bool:
        expected = self._sign("decrypt", ",".join(handles), abi_encoded_clear_values)
        return hmac.compare_digest(expected, proof)

    # ── Internals ──

    async def _round_trip(self) -> None:
        if not self.available:
            raise ConnectionError("Relayer unreachable")
        if self._latency:
            await asyncio.sleep(self._latency)
        else:
            await asyncio.sleep(0)

    def _sign(self, *parts: str) -> str:
        msg = "|".join(parts).encode("utf-8")
        return "0x" + hmac.new(self._key, msg, hashlib.sha256).hexdigest()
