"""
SentimentVaultService — the surface the core exposes to its presentation layer.

    submit(text, identity)     → Record           (SubmissionService)
    verify(record_id, identity)→ clear value      (DecryptionVerifier)
    list_all()                 → [Record]         (RecordStore read path)
    snapshot()                 → Stats            (AggregationView)

plus the supporting reads the dashboard needs: get, distribution,
refresh (pull records created by other clients from the ledger),
is_available, and verify_integrity.

Wiring:
    service = build_service(settings)     # explicit
    service = get_service()               # lazy process-wide singleton
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from web3 import Web3

from sentiment_vault.core.config import Settings, settings
from sentiment_vault.core.crypto.capability import ConfidentialCapability
from sentiment_vault.core.crypto.gateway import EncryptionGateway
from sentiment_vault.core.crypto.simulated import SimulatedConfidentialCapability
from sentiment_vault.core.errors import DuplicateId, NetworkError
from sentiment_vault.core.security.session import SessionIdentity
from sentiment_vault.infrastructure.journal import IntegrityReport
from sentiment_vault.infrastructure.ledger.contract import (
    InMemoryLedgerContract,
    LedgerContract,
)
from sentiment_vault.infrastructure.ledger.web3_contract import Web3LedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore
from sentiment_vault.schemas.record import (
    LedgerRecordData,
    Record,
    Stats,
    VerificationState,
)
from sentiment_vault.services import aggregation
from sentiment_vault.services.decryption_verifier import DecryptionVerifier
from sentiment_vault.services.scoring import RandomSentimentScorer, SentimentScorer
from sentiment_vault.services.submission_service import SubmissionService

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_CONTRACT_ADDRESS = Web3.to_checksum_address(
    "0x5e17a1b7e0c0ffee000000000000000000000001"
)


class SentimentVaultService:
    """Composition of the core components behind one object."""

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerContract,
        capability: ConfidentialCapability,
        scorer: SentimentScorer,
        plaintext_min: int = 0,
        plaintext_max: int = 4,
        label_max_length: int = 20,
        gateway_timeout_seconds: Optional[float] = 30.0,
        oracle_timeout_seconds: Optional[float] = 120.0,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self._plaintext_min = plaintext_min
        self._plaintext_max = plaintext_max
        self._label_max_length = label_max_length

        gateway = EncryptionGateway(
            capability,
            plaintext_min=plaintext_min,
            plaintext_max=plaintext_max,
            timeout_seconds=gateway_timeout_seconds,
        )
        self.submission = SubmissionService(
            gateway, store, ledger, scorer, label_max_length=label_max_length,
        )
        self.verifier = DecryptionVerifier(
            store, ledger, capability, oracle_timeout_seconds=oracle_timeout_seconds,
        )

    # ── Core surface ──

    async def submit(
        self,
        text: str,
        identity: Optional[SessionIdentity],
        record_id: Optional[str] = None,
    ) -> Record:
        return await self.submission.submit(text, identity, record_id=record_id)

    async def verify(self, record_id: str, identity: Optional[SessionIdentity]) -> int:
        return await self.verifier.verify(record_id, identity)

    def list_all(self) -> List[Record]:
        return self.store.list_all()

    def snapshot(self) -> Stats:
        return aggregation.snapshot(self.store.list_all())

    # ── Supporting reads ──

    def get(self, record_id: str) -> Record:
        return self.store.get(record_id)

    def distribution(self) -> Dict[int, int]:
        return aggregation.distribution(
            self.store.list_all(), self._plaintext_min, self._plaintext_max,
        )

    async def is_available(self) -> bool:
        try:
            return await self.ledger.is_available()
        except NetworkError as exc:
            logger.warning(f"[SERVICE] Ledger unreachable: {exc}")
            return False

    def verify_integrity(self) -> IntegrityReport:
        return self.store.verify_integrity()

    async def refresh(self) -> int:
        """
        Pull the ledger's view into the RecordStore.

        Appends records created elsewhere and promotes local records the
        ledger reports as verified. Returns the number of records changed.
        """
        changed = 0
        for record_id in await self.ledger.get_all_record_ids():
            data = await self.ledger.get_record(record_id)
            if not self.store.contains(record_id):
                try:
                    self.store.append(
                        _record_from_ledger(data, self._label_max_length)
                    )
                except DuplicateId:
                    logger.debug(f"[REFRESH] {record_id} appended concurrently")
                    continue
                changed += 1
                continue

            local = self.store.get(record_id)
            if data.is_verified and not local.is_verified:
                if local.verification_state == VerificationState.FAILED:
                    self.store.set_verification_pending(record_id)
                self.store.set_verified(record_id, data.decrypted_value)
                changed += 1

        if changed:
            logger.info(f"[REFRESH] {changed} records updated from ledger")
        return changed


def _record_from_ledger(data: LedgerRecordData, label_max_length: int) -> Record:
    # Ledger names are written by any client; the display bound is applied here.
    return Record(
        id=data.id,
        label=data.name[:label_max_length],
        ciphertext_handle=data.encrypted_value,
        submitter=data.creator,
        public_score=data.public_value1,
        public_confidence=data.public_value2,
        note=data.description,
        verification_state=(
            VerificationState.VERIFIED if data.is_verified else VerificationState.UNVERIFIED
        ),
        clear_value=data.decrypted_value if data.is_verified else None,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

def build_service(
    cfg: Settings = settings,
    capability: Optional[ConfidentialCapability] = None,
) -> SentimentVaultService:
    """
    Wire a SentimentVaultService from configuration.

    The "memory" backend pairs the in-process contract with the simulated
    capability. The "web3" backend needs a real confidential capability
    (relayer client) passed in: simulated handles and HMAC proofs can never
    pass a deployed contract's input or decryption proof checks. A relayer
    must also bind input proofs to the account that sends the transaction,
    which on this backend is the relayer key, not the submitter.
    """
    if cfg.LEDGER_BACKEND == "web3":
        if capability is None:
            raise ValueError(
                "LEDGER_BACKEND=web3 requires a confidential capability bound to the "
                "deployed contract; the simulated capability cannot produce valid proofs"
            )
        if not cfg.SENTIMENT_CONTRACT_ADDRESS or not cfg.DEPLOYER_PRIVATE_KEY:
            raise ValueError(
                "LEDGER_BACKEND=web3 requires SENTIMENT_CONTRACT_ADDRESS and DEPLOYER_PRIVATE_KEY"
            )
        ledger: LedgerContract = Web3LedgerContract(
            provider_url=cfg.WEB3_PROVIDER_URL,
            address=cfg.SENTIMENT_CONTRACT_ADDRESS,
            private_key=cfg.DEPLOYER_PRIVATE_KEY,
            gas_fallback=cfg.TX_GAS_FALLBACK,
        )
    elif cfg.LEDGER_BACKEND == "memory":
        capability = capability or SimulatedConfidentialCapability(
            key=cfg.SIMULATED_CAPABILITY_KEY,
        )
        ledger = InMemoryLedgerContract(
            cfg.SENTIMENT_CONTRACT_ADDRESS or DEFAULT_MEMORY_CONTRACT_ADDRESS,
            capability,
        )
    else:
        raise ValueError(f"Unknown LEDGER_BACKEND {cfg.LEDGER_BACKEND!r}")

    logger.info(
        f"[SERVICE] ledger={cfg.LEDGER_BACKEND} contract={ledger.address} "
        f"store={'file:' + cfg.RECORD_STORE_PATH if cfg.RECORD_STORE_PATH else 'memory'}"
    )

    return SentimentVaultService(
        store=RecordStore(path=cfg.RECORD_STORE_PATH or None),
        ledger=ledger,
        capability=capability,
        scorer=RandomSentimentScorer(
            category_min=cfg.PLAINTEXT_MIN,
            category_max=cfg.PLAINTEXT_MAX,
            confidence_max=cfg.CONFIDENCE_MAX,
        ),
        plaintext_min=cfg.PLAINTEXT_MIN,
        plaintext_max=cfg.PLAINTEXT_MAX,
        label_max_length=cfg.LABEL_MAX_LENGTH,
        gateway_timeout_seconds=cfg.GATEWAY_TIMEOUT_SECONDS,
        oracle_timeout_seconds=cfg.ORACLE_TIMEOUT_SECONDS,
    )


# ── Singleton factory ──────────────────────────────────────────────────────────
_service_instance: Optional[SentimentVaultService] = None


def get_service() -> SentimentVaultService:
    """Lazy process-wide service built from `settings`."""
    global _service_instance
    if _service_instance is None:
        _service_instance = build_service(settings)
    return _service_instance


def reset_service() -> None:
    """Drop the singleton (for testing only)."""
    global _service_instance
    _service_instance = None
