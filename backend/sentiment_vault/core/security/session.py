"""
Session & Identity — who is submitting and verifying.

Two pieces:

    1. SessionIdentity / require_identity: the identity the core acts for.
       Absence of a connected identity fails fast with NotAuthenticated
       before any external call is attempted.

    2. Short-lived, HMAC-signed session tokens binding a checksummed
       wallet address to an access window, so the presentation layer can
       authenticate once per session instead of per request.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from web3 import Web3

from sentiment_vault.core.errors import NotAuthenticated

logger = logging.getLogger(__name__)


class TokenExpired(NotAuthenticated):
    """Raised when the session token TTL has elapsed."""


class TokenInvalid(NotAuthenticated):
    """Raised when the token signature or format is bad."""


@dataclass(frozen=True)
class SessionIdentity:
    """A connected wallet identity (checksummed address)."""
    address: str

    def __str__(self) -> str:
        return self.address


def normalize_address(address: str) -> str:
    """Checksum an EVM address, raising NotAuthenticated if it is not one."""
    if not address or not Web3.is_address(address):
        raise NotAuthenticated(f"Not a valid wallet address: {address!r}")
    return Web3.to_checksum_address(address)


def require_identity(identity: Optional[SessionIdentity]) -> SessionIdentity:
    """Return the connected identity or fail fast."""
    if identity is None or not identity.address:
        raise NotAuthenticated("Connect a wallet before submitting or verifying")
    return identity


def identity_from_address(address: Optional[str]) -> Optional[SessionIdentity]:
    if not address:
        return None
    return SessionIdentity(address=normalize_address(address))


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION TOKENS
# ═══════════════════════════════════════════════════════════════════════════════

def generate_session_token(
    address: str,
    secret_key: str,
    ttl_minutes: int,
) -> Dict[str, str]:
    """
    Create a signed session token for a wallet address.

    Payload:
        - sub: checksummed address
        - iat: issued_at timestamp (int seconds)
        - exp: expires_at timestamp (int seconds)

    Returns:
        Dict containing 'token', 'expires_at' (ISO string) and 'address'.
    """
    subject = normalize_address(address)
    now = int(time.time())
    exp = now + ttl_minutes * 60

    payload = {"sub": subject, "iat": now, "exp": exp}

    json_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    payload_b64 = base64.urlsafe_b64encode(json_bytes).decode("utf-8").rstrip("=")
    signature = _sign(payload_b64, secret_key)

    return {
        "token": f"{payload_b64}.{signature}",
        "expires_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(exp)),
        "address": subject,
    }


def validate_session_token(token: str, secret_key: str) -> str:
    """
    Validate a session token and return the address it was issued to.

    Raises:
        TokenInvalid: if format or signature is bad.
        TokenExpired: if exp < now.
    """
    if not token or "." not in token:
        raise TokenInvalid("Invalid token format")

    payload_b64, provided_sig = token.rsplit(".", 1)

    expected_sig = _sign(payload_b64, secret_key)
    if not hmac.compare_digest(provided_sig, expected_sig):
        raise TokenInvalid("Invalid signature")

    try:
        padding = "=" * (-len(payload_b64) % 4)
        payload = json.loads(base64.urlsafe_b64decode(payload_b64 + padding))
    except (ValueError, TypeError) as e:
        raise TokenInvalid(f"Corrupt payload: {e}")

    if time.time() > payload.get("exp", 0):
        raise TokenExpired("Session token has expired")

    return payload.get("sub", "")


def _sign(data: str, secret_key: str) -> str:
    """HMAC-SHA256 over `data`, urlsafe-base64 without padding."""
    sig_bytes = hmac.new(
        secret_key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256
    ).digest()
    return base64.urlsafe_b64encode(sig_bytes).decode("utf-8").rstrip("=")
