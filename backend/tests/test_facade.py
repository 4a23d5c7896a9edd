import asyncio

import pytest

from sentiment_vault.core.config import Settings
from sentiment_vault.infrastructure.ledger.contract import InMemoryLedgerContract
from sentiment_vault.infrastructure.ledger.web3_contract import Web3LedgerContract
from sentiment_vault.infrastructure.record_store import RecordStore
from sentiment_vault.schemas.record import VerificationState
from sentiment_vault.services import facade
from sentiment_vault.services.facade import SentimentVaultService, build_service
from sentiment_vault.services.scoring import FixedScorer

from conftest import ALICE, BOB, BOB_ADDRESS


def _peer(ledger, capability, store=None):
    """Another client sharing the same ledger."""
    return SentimentVaultService(
        store=store or RecordStore(),
        ledger=ledger,
        capability=capability,
        scorer=FixedScorer(1),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REFRESH FROM LEDGER
# ═══════════════════════════════════════════════════════════════════════════════

def test_refresh_pulls_records_created_elsewhere(service, ledger, capability):
    peer = _peer(ledger, capability)
    asyncio.run(peer.submit("from another tab", BOB, record_id="remote-1"))
    asyncio.run(peer.submit("and another", BOB, record_id="remote-2"))

    assert asyncio.run(service.refresh()) == 2
    assert [r.id for r in service.list_all()] == ["remote-1", "remote-2"]
    remote = service.get("remote-1")
    assert remote.public_score == 1
    assert remote.verification_state == VerificationState.UNVERIFIED

    # Nothing new the second time
    assert asyncio.run(service.refresh()) == 0


def test_refresh_truncates_labels_written_by_other_clients(service, ledger, capability):
    long_name = "a very long analysis name written straight to the ledger " * 3

    async def write_directly():
        enc = await capability.encrypt(ledger.address, BOB_ADDRESS, 2)
        await ledger.create_record(
            "raw-1", long_name, enc.handle, enc.proof, 2, 50, "", BOB_ADDRESS,
        )

    asyncio.run(write_directly())
    assert asyncio.run(service.refresh()) == 1
    assert service.get("raw-1").label == long_name[:20]


def test_refresh_promotes_records_verified_elsewhere(service, ledger, capability):
    rid = asyncio.run(service.submit("mine", ALICE)).id
    peer = _peer(ledger, capability)
    asyncio.run(peer.refresh())
    asyncio.run(peer.verify(rid, BOB))

    assert asyncio.run(service.refresh()) == 1
    record = service.get(rid)
    assert record.verification_state == VerificationState.VERIFIED
    assert record.clear_value == 3


def test_refresh_recovers_failed_record(service, ledger, capability, store):
    rid = asyncio.run(service.submit("mine", ALICE)).id
    store.set_verification_pending(rid)
    store.set_verification_failed(rid)

    peer = _peer(ledger, capability)
    asyncio.run(peer.refresh())
    asyncio.run(peer.verify(rid, BOB))

    asyncio.run(service.refresh())
    assert store.get(rid).clear_value == 3


# ═══════════════════════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════════════════════

def test_snapshot_and_distribution_follow_the_store(make_service):
    low, high = make_service(category=0), make_service(category=4)
    asyncio.run(low.submit("bad day", ALICE))
    asyncio.run(high.submit("great day", ALICE))
    asyncio.run(high.submit("another great day", ALICE))

    stats = low.snapshot()
    assert stats.total == 3
    assert stats.avg_public_score == pytest.approx(8 / 3)
    assert stats.positive_ratio == pytest.approx(200 / 3)
    assert low.distribution() == {0: 1, 1: 0, 2: 0, 3: 0, 4: 2}


def test_is_available_reports_ledger_state(service, ledger):
    assert asyncio.run(service.is_available()) is True
    ledger.available = False
    assert asyncio.run(service.is_available()) is False


def test_integrity_after_activity(service):
    rid = asyncio.run(service.submit("hello", ALICE)).id
    asyncio.run(service.verify(rid, ALICE))
    report = service.verify_integrity()
    assert report.is_valid
    assert report.chain_length == 3


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

def test_build_service_memory_backend(tmp_path):
    cfg = Settings(LEDGER_BACKEND="memory", RECORD_STORE_PATH=str(tmp_path / "store.json"))
    service = build_service(cfg)
    assert isinstance(service.ledger, InMemoryLedgerContract)
    assert service.ledger.address == facade.DEFAULT_MEMORY_CONTRACT_ADDRESS

    record = asyncio.run(service.submit("persist me", ALICE))
    assert 0 <= record.public_score <= 4
    assert 0 <= record.public_confidence < 100
    assert (tmp_path / "store.json").exists()


def test_build_service_web3_requires_contract_and_key(capability):
    with pytest.raises(ValueError):
        build_service(Settings(LEDGER_BACKEND="web3"), capability=capability)


def test_build_service_web3_refuses_simulated_capability():
    cfg = Settings(
        LEDGER_BACKEND="web3",
        SENTIMENT_CONTRACT_ADDRESS="0x" + "c3" * 20,
        DEPLOYER_PRIVATE_KEY="0x" + "11" * 32,
    )
    with pytest.raises(ValueError, match="confidential capability"):
        build_service(cfg)


def test_build_service_web3_with_injected_capability(capability):
    cfg = Settings(
        LEDGER_BACKEND="web3",
        SENTIMENT_CONTRACT_ADDRESS="0x" + "c3" * 20,
        DEPLOYER_PRIVATE_KEY="0x" + "11" * 32,
    )
    service = build_service(cfg, capability=capability)
    assert isinstance(service.ledger, Web3LedgerContract)
    assert service.verifier._oracle is capability


def test_build_service_unknown_backend():
    with pytest.raises(ValueError):
        build_service(Settings(LEDGER_BACKEND="carrier-pigeon"))


def test_singleton_reset():
    facade.reset_service()
    first = facade.get_service()
    assert facade.get_service() is first
    facade.reset_service()
    assert facade.get_service() is not first
    facade.reset_service()
