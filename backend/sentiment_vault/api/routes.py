"""
Records API: HTTP adapter over SentimentVaultService.

Translates typed core errors into HTTP responses; the core itself never
sees HTTP objects.

    POST /records                 submit text as an encrypted record
    POST /records/{id}/verify     disclose a record's value (at most once)
    GET  /records                 all records, insertion order
    GET  /records/{id}            one record
    POST /records/refresh         pull records created elsewhere from the ledger
    GET  /stats                   aggregate statistics
    GET  /stats/distribution      per-emotion counts
    POST /auth/session            issue a signed session token

Identity:
    X-Submitter-Address   wallet address (required for submit / verify)
    X-Session-Token       required when REQUIRE_SESSION_TOKEN is on
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel

from sentiment_vault.core.config import settings
from sentiment_vault.core.errors import (
    ContractRevertError,
    DuplicateId,
    EncodingError,
    InputValidationError,
    InvalidTransition,
    NetworkError,
    NotAuthenticated,
    NotFound,
    SentimentVaultError,
    VerificationError,
)
from sentiment_vault.core.security.session import (
    SessionIdentity,
    generate_session_token,
    identity_from_address,
    validate_session_token,
)
from sentiment_vault.schemas.record import (
    DistributionEntry,
    Record,
    Stats,
    SubmitRequest,
    VerifyResponse,
    emotion_label,
)
from sentiment_vault.services import aggregation
from sentiment_vault.services.facade import SentimentVaultService, get_service

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_ERROR = [
    (NotAuthenticated, status.HTTP_401_UNAUTHORIZED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (DuplicateId, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (InputValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (EncodingError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (VerificationError, status.HTTP_502_BAD_GATEWAY),
    (NetworkError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ContractRevertError, status.HTTP_409_CONFLICT),
]


def to_http_exception(exc: SentimentVaultError) -> HTTPException:
    """Map a core error onto an HTTPException with a structured detail."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            code = error_code
            break
    return HTTPException(
        status_code=code,
        detail={
            "error": type(exc).__name__,
            "reason": exc.reason,
            "retryable": exc.retryable,
            "message": str(exc),
        },
    )


def get_identity(
    x_submitter_address: Optional[str] = Header(default=None),
    x_session_token: Optional[str] = Header(default=None),
) -> Optional[SessionIdentity]:
    """
    Resolve the connected identity from request headers.

    Returns None when no address is supplied, so the core rejects the
    call with NotAuthenticated before any external call.
    """
    try:
        identity = identity_from_address(x_submitter_address)
        if identity is not None and settings.REQUIRE_SESSION_TOKEN:
            subject = validate_session_token(x_session_token or "", settings.SECRET_KEY)
            if subject != identity.address:
                raise NotAuthenticated("Session token was issued to a different address")
    except NotAuthenticated as exc:
        raise to_http_exception(exc)
    return identity


# ═══════════════════════════════════════════════════════════════════════════════
# RECORD ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post(
    "/records",
    response_model=Record,
    status_code=status.HTTP_201_CREATED,
    tags=["Records"],
)
async def submit_record(
    req: SubmitRequest,
    identity: Optional[SessionIdentity] = Depends(get_identity),
    service: SentimentVaultService = Depends(get_service),
) -> Record:
    """Score, encrypt and commit one sentiment analysis."""
    try:
        return await service.submit(req.text, identity, record_id=req.record_id)
    except SentimentVaultError as exc:
        logger.warning(f"[API] submit rejected: {type(exc).__name__}: {exc}")
        raise to_http_exception(exc)


@router.post("/records/refresh", tags=["Records"])
async def refresh_records(
    service: SentimentVaultService = Depends(get_service),
) -> dict:
    """Pull records created by other clients from the ledger."""
    try:
        changed = await service.refresh()
    except SentimentVaultError as exc:
        raise to_http_exception(exc)
    return {"changed": changed, "total": len(service.list_all())}


@router.post("/records/{record_id}/verify", response_model=VerifyResponse, tags=["Records"])
async def verify_record(
    record_id: str,
    identity: Optional[SessionIdentity] = Depends(get_identity),
    service: SentimentVaultService = Depends(get_service),
) -> VerifyResponse:
    """Disclose the record's encrypted value through the decryption oracle."""
    try:
        clear_value = await service.verify(record_id, identity)
    except SentimentVaultError as exc:
        logger.warning(f"[API] verify {record_id} failed: {type(exc).__name__}: {exc}")
        raise to_http_exception(exc)
    return VerifyResponse(
        record_id=record_id,
        clear_value=clear_value,
        emotion=emotion_label(clear_value),
    )


@router.get("/records", response_model=List[Record], tags=["Records"])
def list_records(service: SentimentVaultService = Depends(get_service)) -> List[Record]:
    return service.list_all()


@router.get("/records/{record_id}", response_model=Record, tags=["Records"])
def get_record(
    record_id: str,
    service: SentimentVaultService = Depends(get_service),
) -> Record:
    try:
        return service.get(record_id)
    except SentimentVaultError as exc:
        raise to_http_exception(exc)


# ═══════════════════════════════════════════════════════════════════════════════
# STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/stats", response_model=Stats, tags=["Statistics"])
def get_stats(service: SentimentVaultService = Depends(get_service)) -> Stats:
    return service.snapshot()


@router.get("/stats/distribution", response_model=List[DistributionEntry], tags=["Statistics"])
def get_distribution(
    service: SentimentVaultService = Depends(get_service),
) -> List[DistributionEntry]:
    return aggregation.distribution_entries(service.distribution())


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════

class SessionRequest(BaseModel):
    address: str


class SessionResponse(BaseModel):
    token: str
    expires_at: str
    address: str


@router.post("/auth/session", response_model=SessionResponse, tags=["Auth"])
def request_session(req: SessionRequest) -> SessionResponse:
    """Issue a signed, short-lived session token for a wallet address."""
    try:
        issued = generate_session_token(
            req.address, settings.SECRET_KEY, settings.SESSION_TOKEN_TTL_MINUTES,
        )
    except NotAuthenticated as exc:
        raise to_http_exception(exc)
    logger.info(f"[AUTH] Session issued for {issued['address']}")
    return SessionResponse(**issued)
