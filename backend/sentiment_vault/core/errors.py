"""
Sentiment Vault Error Taxonomy.

Every failure surfaced by the core is one of the classes below. Callers
decide retry and backoff; the core never swallows an error except the
"already verified" race, which the DecryptionVerifier reconciles locally.

    ┌──────────────────────┬────────────┬──────────────────────────────┐
    │ Error                │ Retryable  │ Caller action                │
    ├──────────────────────┼────────────┼──────────────────────────────┤
    │ InputValidationError │ no         │ fix the input                │
    │ EncodingError        │ no         │ fix the plaintext domain     │
    │ NetworkError         │ yes        │ retry the whole operation    │
    │ GatewayUnavailable   │ yes        │ retry the whole operation    │
    │ DuplicateId          │ no         │ choose another id            │
    │ NotFound             │ no         │ fatal to the call            │
    │ InvalidTransition    │ no         │ fatal to the call            │
    │ VerificationError    │ yes        │ call verify again            │
    │ NotAuthenticated     │ no         │ re-establish identity        │
    │ ContractRevertError  │ no         │ inspect the revert reason    │
    │ CorruptSnapshot      │ no         │ restore the snapshot file    │
    └──────────────────────┴────────────┴──────────────────────────────┘
"""

from __future__ import annotations

from typing import Any, Dict, Optional


# Revert string emitted by the ledger contract on a second attestation.
ALREADY_VERIFIED_REASON = "Data already verified"


class SentimentVaultError(Exception):
    """Base class for every typed failure returned by the core."""

    retryable: bool = False

    def __init__(
        self,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


class InputValidationError(SentimentVaultError):
    """Raised when submitted text or identifiers are malformed."""


class EncodingError(SentimentVaultError):
    """Raised when a plaintext lies outside the scheme's supported domain."""


class NetworkError(SentimentVaultError):
    """Transient failure reaching an external collaborator."""

    retryable = True


class GatewayUnavailable(NetworkError):
    """The confidential-encryption capability could not be reached."""


class DuplicateId(SentimentVaultError):
    """A record with the same id already exists."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(
            f"Record '{record_id}' already exists",
            {"record_id": record_id},
        )


class NotFound(SentimentVaultError):
    """No record with the requested id."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(
            f"Record '{record_id}' not found",
            {"record_id": record_id},
        )


class InvalidTransition(SentimentVaultError):
    """A guarded verification-state transition was refused."""

    def __init__(self, record_id: str, current: str, target: str) -> None:
        self.record_id = record_id
        self.current = current
        self.target = target
        super().__init__(
            f"Record '{record_id}' cannot move from {current} to {target}",
            {"record_id": record_id, "current": current, "target": target},
        )


class VerificationError(SentimentVaultError):
    """Oracle or attestation failure. A fresh verify call may succeed."""

    retryable = True

    def __init__(
        self,
        record_id: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.record_id = record_id
        self.cause = cause
        super().__init__(
            reason,
            {"record_id": record_id, "cause": repr(cause) if cause else ""},
        )


class NotAuthenticated(SentimentVaultError):
    """No connected identity; the call was not attempted."""

    def __init__(self, reason: str = "No connected identity") -> None:
        super().__init__(reason)


class CorruptSnapshot(SentimentVaultError):
    """A persisted store failed its journal integrity check on load."""

    def __init__(self, path: str, first_invalid_index: int, message: str) -> None:
        self.path = path
        self.first_invalid_index = first_invalid_index
        super().__init__(
            f"Snapshot {path} failed integrity check: {message}",
            {"path": path, "first_invalid_index": first_invalid_index},
        )


class ContractRevertError(SentimentVaultError):
    """
    Raised when the ledger contract reverts a call.

    Equivalent to a Solidity 'revert': the transaction had no effect and
    `reason` carries the revert string.
    """


class AlreadyVerified(ContractRevertError):
    """The record was attested by another caller first."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(ALREADY_VERIFIED_REASON, {"record_id": record_id})


def is_already_verified(exc: BaseException) -> bool:
    """True when `exc` reports the benign "already verified" condition."""
    if isinstance(exc, AlreadyVerified):
        return True
    return ALREADY_VERIFIED_REASON.lower() in str(exc).lower()
