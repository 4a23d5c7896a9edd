"""
SubmissionService — validate, score, encrypt, commit.

Submission Pipeline:
    1. Identity gate          → NotAuthenticated (no external call made)
    2. Text validation        → InputValidationError (gateway never invoked)
    3. Id uniqueness          → DuplicateId
    4. Score (collaborator)   → plaintext category + confidence
    5. EncryptionGateway      → (handle, input proof) bound to the contract
    6. Ledger create_record   → on-chain record with proof check
    7. RecordStore.append     → record visible, state Unverified

Atomicity:
    The RecordStore append is the last step. A failure or cancellation in
    steps 1–6 leaves no record in the store.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from sentiment_vault.core.crypto.gateway import EncryptionGateway
from sentiment_vault.core.errors import (
    ContractRevertError,
    DuplicateId,
    InputValidationError,
)
from sentiment_vault.core.security.session import SessionIdentity, require_identity
from sentiment_vault.infrastructure.ledger.contract import LedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore
from sentiment_vault.schemas.record import Record, VerificationState
from sentiment_vault.services.scoring import SentimentScorer

logger = logging.getLogger(__name__)

RECORD_ID_MAX_LENGTH = 128
NOTE_PREFIX = "Emotion analysis: "


def generate_record_id() -> str:
    """emotion-<unix-ms>-<6 hex>, unique across concurrent submitters."""
    return f"emotion-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class SubmissionService:
    """
    Builds and commits new encrypted sentiment records.

    Args:
        gateway: Encrypts the plaintext category.
        store: Destination RecordStore.
        ledger: Ledger contract; its address is the default encryption context.
        scorer: Derives category and confidence from text.
        label_max_length: Display label is the text truncated to this length.
    """

    def __init__(
        self,
        gateway: EncryptionGateway,
        store: RecordStore,
        ledger: LedgerContract,
        scorer: SentimentScorer,
        label_max_length: int = 20,
        id_factory: Callable[[], str] = generate_record_id,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._ledger = ledger
        self._scorer = scorer
        self._label_max_length = label_max_length
        self._id_factory = id_factory

    async def submit(
        self,
        raw_text: str,
        submitter: Optional[SessionIdentity],
        context: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> Record:
        """
        Submit one sentiment analysis as an encrypted record.

        Args:
            raw_text: Text to analyse. Must contain non-whitespace characters.
            submitter: Connected identity; None fails fast.
            context: Encryption context; defaults to the ledger contract address.
            record_id: Caller-supplied id; generated when omitted.

        Returns:
            The committed Record (state Unverified).

        Raises:
            NotAuthenticated, InputValidationError, DuplicateId,
            EncodingError, GatewayUnavailable, NetworkError,
            ContractRevertError.
        """
        identity = require_identity(submitter)

        if not raw_text or not raw_text.strip():
            raise InputValidationError("Text to analyse must not be empty")

        record_id = record_id if record_id is not None else self._id_factory()
        if not record_id or len(record_id) > RECORD_ID_MAX_LENGTH:
            raise InputValidationError(
                f"Record id must be 1–{RECORD_ID_MAX_LENGTH} characters"
            )
        if self._store.contains(record_id):
            raise DuplicateId(record_id)

        context = context or self._ledger.address
        score = self._scorer.score(raw_text)

        encrypted = await self._gateway.encrypt(context, identity.address, score.category)

        label = raw_text[: self._label_max_length]
        note = f"{NOTE_PREFIX}{raw_text}"
        try:
            tx_hash = await self._ledger.create_record(
                record_id,
                label,
                encrypted.handle,
                encrypted.proof,
                score.category,
                score.confidence,
                note,
                identity.address,
            )
        except ContractRevertError as exc:
            if "already exists" in exc.reason:
                raise DuplicateId(record_id) from exc
            raise

        record = Record(
            id=record_id,
            label=label,
            ciphertext_handle=encrypted.handle,
            submitter=identity.address,
            public_score=score.category,
            public_confidence=score.confidence,
            note=note,
            verification_state=VerificationState.UNVERIFIED,
        )
        self._store.append(record)

        logger.info(
            f"[SUBMIT] {record_id} committed: submitter={identity.address} "
            f"handle={encrypted.handle[:18]}... tx={tx_hash[:18]}..."
        )
        return self._store.get(record_id)
