"""
Pydantic schemas for encrypted sentiment records.

A Record is one submitted analysis: a short display label, an opaque
ciphertext handle of the sentiment category, two plaintext auxiliary
integers used for indexing and analytics, and a verification state
that tracks disclosure of the encrypted value.

- Records are frozen. State changes produce a new Record through the
  RecordStore's guarded transitions, never by field assignment.
- `clear_value` is present iff `verification_state` is Verified.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VerificationState(str, Enum):
    """Disclosure lifecycle of a record's encrypted value."""
    UNVERIFIED = "Unverified"
    PENDING = "VerificationPending"
    VERIFIED = "Verified"
    FAILED = "VerificationFailed"


# Emotion categories in plaintext-domain order.
EMOTION_LABELS: List[str] = ["anger", "sadness", "calm", "joy", "excitement"]


# Upper bound on a stored display label, whatever the configured truncation.
LABEL_LIMIT = 128


def emotion_label(score: int) -> str:
    """Human-readable name of an emotion category, or 'unknown'."""
    if 0 <= score < len(EMOTION_LABELS):
        return EMOTION_LABELS[score]
    return "unknown"


class Record(BaseModel):
    """
    One submitted analysis as held by the RecordStore.

    `ciphertext_handle` never changes after creation and the clear value
    is only attached by a successful, attested disclosure.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=128)
    label: str = Field(..., max_length=LABEL_LIMIT)
    ciphertext_handle: str
    submitter: str
    created_at: float = 0.0
    public_score: int
    public_confidence: int
    note: str = ""
    verification_state: VerificationState = VerificationState.UNVERIFIED
    clear_value: Optional[int] = None
    attestation_tx: str = ""

    @model_validator(mode="after")
    def check_disclosure_invariant(self) -> "Record":
        """A clear value exists exactly when the record is Verified."""
        is_verified = self.verification_state == VerificationState.VERIFIED
        if is_verified and self.clear_value is None:
            raise ValueError("Verified record must carry a clear_value")
        if not is_verified and self.clear_value is not None:
            raise ValueError(
                f"clear_value must be absent in state {self.verification_state.value}"
            )
        return self

    @property
    def is_verified(self) -> bool:
        return self.verification_state == VerificationState.VERIFIED


class EncryptedInput(BaseModel):
    """Ciphertext handle plus input proof returned by the gateway."""
    handle: str
    proof: str


class DecryptionResult(BaseModel):
    """Oracle output: clear values keyed by handle, with proof of decryption."""
    clear_values: Dict[str, int] = Field(default_factory=dict)
    abi_encoded_clear_values: str = ""
    decryption_proof: str = ""
    attestation_tx: str = ""


class LedgerRecordData(BaseModel):
    """Record as reported by the ledger contract's getRecord view."""
    id: str
    name: str
    encrypted_value: str
    public_value1: int
    public_value2: int
    description: str = ""
    creator: str
    timestamp: float
    is_verified: bool = False
    decrypted_value: int = 0


class Stats(BaseModel):
    """Read-only projection over the current record snapshot."""
    total: int = 0
    verified_count: int = 0
    avg_public_score: float = 0.0
    positive_ratio: float = 0.0


# ── API wire models ──

class SubmitRequest(BaseModel):
    text: str
    record_id: Optional[str] = None


class VerifyResponse(BaseModel):
    record_id: str
    clear_value: int
    emotion: str


class DistributionEntry(BaseModel):
    category: int
    emotion: str
    count: int
