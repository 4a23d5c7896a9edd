"""
EncryptionGateway — plaintext category → (ciphertext handle, input proof).

Wraps the confidential-encryption capability behind the core's error
taxonomy. The ciphertext is bound to a consuming context (the ledger
contract address) and the submitter identity, so it cannot be replayed
into a different contract.

No retries happen here; the caller decides.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sentiment_vault.core.crypto.capability import ConfidentialCapability
from sentiment_vault.core.errors import EncodingError, GatewayUnavailable
from sentiment_vault.schemas.record import EncryptedInput

logger = logging.getLogger(__name__)


class EncryptionGateway:
    """
    Domain-checked, time-bounded front for `ConfidentialCapability.encrypt`.

    Args:
        capability: Backend performing the actual encryption.
        plaintext_min / plaintext_max: Inclusive plaintext domain
            (0–4 for the five emotion categories).
        timeout_seconds: Upper bound on one capability round trip.
    """

    def __init__(
        self,
        capability: ConfidentialCapability,
        plaintext_min: int = 0,
        plaintext_max: int = 4,
        timeout_seconds: Optional[float] = 30.0,
    ) -> None:
        if plaintext_min > plaintext_max:
            raise ValueError("plaintext_min must be <= plaintext_max")
        self._capability = capability
        self._min = plaintext_min
        self._max = plaintext_max
        self._timeout = timeout_seconds

    @property
    def domain(self) -> range:
        return range(self._min, self._max + 1)

    async def encrypt(
        self,
        context: str,
        submitter: str,
        plaintext: int,
    ) -> EncryptedInput:
        """
        Encrypt `plaintext` for `context` on behalf of `submitter`.

        Raises:
            EncodingError: plaintext outside the domain, or rejected by
                the capability.
            GatewayUnavailable: capability unreachable or timed out.
        """
        if isinstance(plaintext, bool) or not isinstance(plaintext, int):
            raise EncodingError(
                f"Plaintext must be an integer, got {type(plaintext).__name__}"
            )
        if plaintext not in self.domain:
            raise EncodingError(
                f"Plaintext {plaintext} outside domain [{self._min}, {self._max}]",
                {"plaintext_min": self._min, "plaintext_max": self._max},
            )
        if not context:
            raise EncodingError("Encryption context is required")

        try:
            result = await asyncio.wait_for(
                self._capability.encrypt(context, submitter, plaintext),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(f"[GATEWAY] encrypt timed out after {self._timeout}s")
            raise GatewayUnavailable(
                f"Encryption capability timed out after {self._timeout}s"
            ) from exc
        except ValueError as exc:
            raise EncodingError(f"Capability rejected plaintext: {exc}") from exc
        except OSError as exc:
            logger.warning(f"[GATEWAY] capability unreachable: {exc}")
            raise GatewayUnavailable(
                f"Encryption capability unavailable: {exc}"
            ) from exc

        logger.debug(
            f"[GATEWAY] ciphertext issued: handle={result.handle[:18]}... "
            f"context={context}"
        )
        return result
