"""
DecryptionVerifier — request → proof → attest → disclose, at most once.

State machine per record:

    Unverified ──request──▶ VerificationPending ──oracle ok──▶ Verified (terminal)
    Unverified ──request──▶ VerificationPending ──oracle err─▶ VerificationFailed
    VerificationFailed  ──request──▶ VerificationPending       (retry)
    VerificationPending ──request──▶ VerificationPending       (stuck retry)
    Verified ──request──▶ Verified                             (no oracle call)

Protocol:
    1. Load the record. If Verified, return the stored clear value.
    2. Mark VerificationPending.
    3. Ask the oracle to decrypt the record's handle and prove it. The
       oracle calls back into the ledger's attestDecryption with the
       encoded clear values and proof.
    4. On success, take the value disclosed for this handle and commit it
       through RecordStore.set_verified.
    5. On failure:
         "already verified"  → race loser. Re-read the record (store, then
                               ledger) and return the canonical value.
         anything else       → mark VerificationFailed, raise
                               VerificationError.

Step 1's check is not atomic against concurrent verifiers, so step 5's
reconciliation is what keeps a single terminal state: the ledger accepts
exactly one attestation and every other caller adopts its value.

Cancellation propagates unchanged and leaves the record Pending; a later
verify call retries it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sentiment_vault.core.crypto.capability import ConfidentialCapability
from sentiment_vault.core.errors import (
    InvalidTransition,
    VerificationError,
    is_already_verified,
)
from sentiment_vault.core.security.session import SessionIdentity, require_identity
from sentiment_vault.infrastructure.ledger.contract import LedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore
from sentiment_vault.schemas.record import VerificationState

logger = logging.getLogger(__name__)


class DecryptionVerifier:
    """
    Discloses a record's encrypted value exactly once.

    Args:
        store: RecordStore holding the record.
        ledger: Ledger contract (encryption context + attestation entry point).
        oracle: Confidential capability that decrypts and proves.
        oracle_timeout_seconds: Upper bound on one oracle round trip.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerContract,
        oracle: ConfidentialCapability,
        oracle_timeout_seconds: Optional[float] = 120.0,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._oracle = oracle
        self._timeout = oracle_timeout_seconds

    async def verify(
        self,
        record_id: str,
        requester: Optional[SessionIdentity],
    ) -> int:
        """
        Return the verified clear value of `record_id`.

        Raises:
            NotAuthenticated: no connected identity.
            NotFound: unknown record id.
            VerificationError: oracle or attestation failure (retryable).
            InvalidTransition: store consistency violation.
        """
        identity = require_identity(requester)

        record = self._store.get(record_id)
        if record.is_verified:
            logger.debug(f"[VERIFY] {record_id} already verified, no oracle call")
            return record.clear_value

        self._store.set_verification_pending(record_id)
        handle = record.ciphertext_handle

        async def attest(abi_encoded_clear_values: str, decryption_proof: str) -> str:
            return await self._ledger.attest_decryption(
                record_id, abi_encoded_clear_values, decryption_proof, identity.address,
            )

        try:
            ledger_handle = await self._ledger.get_encrypted_handle(record_id)
            if ledger_handle.lower() != handle.lower():
                raise VerificationError(
                    record_id, "Ledger handle does not match the stored ciphertext handle",
                )

            result = await asyncio.wait_for(
                self._oracle.decrypt_and_prove([handle], self._ledger.address, attest),
                timeout=self._timeout,
            )
            if handle not in result.clear_values:
                raise VerificationError(
                    record_id, "Oracle response did not disclose the requested handle",
                )
            clear_value = int(result.clear_values[handle])
        except Exception as exc:
            if is_already_verified(exc):
                return await self._reconcile(record_id, exc)
            return self._settle_failure(record_id, exc)

        logger.info(f"[VERIFY] {record_id} disclosed and attested (tx={result.attestation_tx[:18]})")
        return self._commit(record_id, clear_value, result.attestation_tx)

    # ── Internals ──

    async def _reconcile(self, record_id: str, exc: Exception) -> int:
        """Race loser: adopt the value the winning attestation recorded."""
        logger.info(f"[VERIFY] {record_id} verified concurrently, reconciling")

        current = self._store.get(record_id)
        if current.is_verified:
            return current.clear_value

        try:
            ledger_record = await self._ledger.get_record(record_id)
        except Exception as read_exc:
            return self._settle_failure(record_id, read_exc)

        if not ledger_record.is_verified:
            return self._settle_failure(record_id, exc)
        return self._commit(record_id, ledger_record.decrypted_value)

    def _commit(self, record_id: str, clear_value: int, attestation_tx: str = "") -> int:
        try:
            record = self._store.set_verified(record_id, clear_value, attestation_tx)
        except InvalidTransition as exc:
            # A concurrent caller marked the record failed after our attestation won.
            if exc.current != VerificationState.FAILED.value:
                raise
            self._store.set_verification_pending(record_id)
            record = self._store.set_verified(record_id, clear_value, attestation_tx)
        return record.clear_value

    def _settle_failure(self, record_id: str, exc: Exception) -> int:
        current = self._store.get(record_id)
        if current.is_verified:
            logger.info(f"[VERIFY] {record_id} failed locally but was verified concurrently")
            return current.clear_value

        self._store.set_verification_failed(record_id)
        logger.warning(f"[VERIFY] {record_id} disclosure failed: {exc!r}")
        if isinstance(exc, VerificationError):
            raise exc
        if isinstance(exc, asyncio.TimeoutError):
            raise VerificationError(
                record_id, f"Oracle timed out after {self._timeout}s", cause=exc,
            ) from exc
        raise VerificationError(record_id, f"Disclosure failed: {exc}", cause=exc) from exc
