import asyncio
import threading
import time
from types import SimpleNamespace

import pytest
import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3RPCError

from sentiment_vault.core.errors import AlreadyVerified, ContractRevertError, NetworkError
from sentiment_vault.infrastructure.ledger.web3_contract import Web3LedgerContract

from conftest import ALICE_ADDRESS

CONTRACT = "0x" + "c3" * 20
RELAYER = Web3.to_checksum_address("0x" + "e4" * 20)
HANDLE = "0x" + "ab" * 32
PROOF = "0x" + "cd" * 40


class FakeChain:
    """
    Node state shared by the fake web3 pieces.

    The pending transaction count only advances once a receipt is mined,
    like a node that has not yet seen the relayer's in-flight broadcasts.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.calls = []
        self.sent = []
        self.mined = 0
        self.block_time = 0.0
        self.receipt_status = 1
        self.estimate_error = None
        self.send_error = None
        self.connected = True
        self.views = {}

    def sent_nonces(self):
        return [tx["nonce"] for tx in self.sent]


class FakeCall:
    def __init__(self, chain, name, args):
        self.chain = chain
        self.name = name
        self.args = args
        chain.calls.append((name, args))

    def estimate_gas(self, tx):
        if self.chain.estimate_error is not None:
            raise self.chain.estimate_error
        return 100_000

    def build_transaction(self, tx):
        return {**tx, "to": CONTRACT, "function": self.name}

    def call(self):
        result = self.chain.views[self.name]
        if isinstance(result, Exception):
            raise result
        return result


class FakeFunctions:
    def __init__(self, chain):
        self._chain = chain

    def __getattr__(self, name):
        return lambda *args: FakeCall(self._chain, name, args)


class FakeAccount:
    @staticmethod
    def from_key(private_key):
        return SimpleNamespace(address=RELAYER)

    @staticmethod
    def sign_transaction(tx, private_key):
        return SimpleNamespace(raw_transaction=tx)


class FakeEth:
    chain_id = 31337
    gas_price = 1_000_000_000
    account = FakeAccount()

    def __init__(self, chain):
        self._chain = chain

    def get_transaction_count(self, address, block_identifier):
        assert block_identifier == "pending"
        time.sleep(0.01)
        with self._chain.lock:
            return self._chain.mined

    def send_raw_transaction(self, raw):
        with self._chain.lock:
            if self._chain.send_error is not None:
                error, self._chain.send_error = self._chain.send_error, None
                raise error
            if raw["nonce"] in self._chain.sent_nonces():
                raise Web3RPCError(f"nonce too low: tx nonce {raw['nonce']}")
            self._chain.sent.append(raw)
            return (raw["nonce"] + 1).to_bytes(32, "big")

    def wait_for_transaction_receipt(self, tx_hash):
        time.sleep(self._chain.block_time)
        with self._chain.lock:
            self._chain.mined += 1
        return SimpleNamespace(status=self._chain.receipt_status)

    def contract(self, address, abi):
        return SimpleNamespace(address=address, functions=FakeFunctions(self._chain))


class FakeWeb3:
    to_hex = staticmethod(Web3.to_hex)

    def __init__(self, chain):
        self._chain = chain
        self.eth = FakeEth(chain)
        self.middleware_onion = SimpleNamespace(inject=lambda *args, **kwargs: None)

    def is_connected(self):
        return self._chain.connected


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def contract(chain):
    return Web3LedgerContract(
        provider_url="http://127.0.0.1:8545",
        address=CONTRACT,
        private_key="0x" + "11" * 32,
        gas_fallback=777_000,
        w3=FakeWeb3(chain),
    )


def _attest(contract, record_id="r1"):
    return contract.attest_decryption(record_id, "0x" + "00" * 31 + "03", PROOF, ALICE_ADDRESS)


# ═══════════════════════════════════════════════════════════════════════════════
# WRITES
# ═══════════════════════════════════════════════════════════════════════════════

def test_create_record_signs_and_sends(contract, chain):
    tx_hash = asyncio.run(contract.create_record(
        "r1", "great day", HANDLE, PROOF, 3, 80, "Emotion analysis", ALICE_ADDRESS,
    ))

    assert tx_hash == "0x" + "00" * 31 + "01"
    assert chain.calls == [(
        "createBusinessData",
        ("r1", "great day", bytes.fromhex("ab" * 32), bytes.fromhex("cd" * 40),
         3, 80, "Emotion analysis"),
    )]
    [tx] = chain.sent
    assert tx["function"] == "createBusinessData"
    assert tx["nonce"] == 0
    assert tx["chainId"] == 31337
    assert tx["gas"] == 120_000


def test_attest_decryption_sends_bytes(contract, chain):
    asyncio.run(_attest(contract))
    name, args = chain.calls[0]
    assert name == "verifyDecryption"
    assert args == ("r1", bytes.fromhex("00" * 31 + "03"), bytes.fromhex("cd" * 40))


def test_gas_estimate_failure_uses_fallback(contract, chain):
    chain.estimate_error = ValueError("estimate unavailable")
    asyncio.run(_attest(contract))
    assert chain.sent[0]["gas"] == 777_000


def test_revert_during_estimate_is_not_sent(contract, chain):
    chain.estimate_error = ContractLogicError("execution reverted: Data already verified")
    with pytest.raises(AlreadyVerified):
        asyncio.run(_attest(contract))
    assert chain.sent == []


def test_failed_receipt_is_a_revert(contract, chain):
    chain.receipt_status = 0
    with pytest.raises(ContractRevertError, match="reverted on-chain"):
        asyncio.run(_attest(contract))


# ═══════════════════════════════════════════════════════════════════════════════
# RELAYER NONCES
# ═══════════════════════════════════════════════════════════════════════════════

def test_concurrent_writes_get_distinct_nonces(contract, chain):
    chain.block_time = 0.05

    async def scenario():
        return await asyncio.gather(
            _attest(contract, "r1"), _attest(contract, "r2"), _attest(contract, "r3"),
        )

    tx_hashes = asyncio.run(scenario())
    assert len(set(tx_hashes)) == 3
    assert sorted(chain.sent_nonces()) == [0, 1, 2]


def test_next_nonce_runs_ahead_of_lagging_node(contract, chain):
    chain.block_time = 0.05

    async def scenario():
        await asyncio.gather(_attest(contract, "r1"), _attest(contract, "r2"))
        chain.mined = 0  # node has not indexed the mined blocks yet
        await _attest(contract, "r3")

    asyncio.run(scenario())
    assert chain.sent_nonces()[-1] == 2


def test_node_rejection_is_a_network_error(contract, chain):
    chain.send_error = Web3RPCError("nonce too low: next nonce 4, tx nonce 0")
    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(_attest(contract))
    assert exc_info.value.retryable
    assert exc_info.value.details["record_id"] == "r1"


def test_nonce_is_reread_after_failed_send(contract, chain):
    asyncio.run(_attest(contract, "r1"))
    chain.send_error = Web3RPCError("replacement transaction underpriced")
    with pytest.raises(NetworkError):
        asyncio.run(_attest(contract, "r2"))

    asyncio.run(_attest(contract, "r3"))
    assert chain.sent_nonces() == [0, 1]


# ═══════════════════════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════════════════════

def test_get_record_unpacks_view_tuple(contract, chain):
    creator = Web3.to_checksum_address(ALICE_ADDRESS)
    chain.views["getBusinessData"] = (
        "great day", 3, 87, "Emotion analysis", creator, 1_700_000_000, True, 3,
    )
    chain.views["getEncryptedValue"] = bytes.fromhex("ab" * 32)

    data = asyncio.run(contract.get_record("r1"))
    assert data.id == "r1"
    assert data.name == "great day"
    assert (data.public_value1, data.public_value2) == (3, 87)
    assert data.description == "Emotion analysis"
    assert data.creator == creator
    assert data.timestamp == 1_700_000_000.0
    assert data.is_verified is True
    assert data.decrypted_value == 3
    assert data.encrypted_value == HANDLE


def test_encrypted_handle_is_hex(contract, chain):
    chain.views["getEncryptedValue"] = bytes.fromhex("0f" * 32)
    assert asyncio.run(contract.get_encrypted_handle("r1")) == "0x" + "0f" * 32


def test_view_revert_is_contract_revert(contract, chain):
    chain.views["getBusinessData"] = ContractLogicError("execution reverted: Record does not exist")
    with pytest.raises(ContractRevertError, match="does not exist"):
        asyncio.run(contract.get_record("ghost"))


def test_view_transport_failure_is_network_error(contract, chain):
    chain.views["getAllBusinessIds"] = requests.exceptions.ConnectionError("refused")
    with pytest.raises(NetworkError):
        asyncio.run(contract.get_all_record_ids())


def test_get_all_record_ids(contract, chain):
    chain.views["getAllBusinessIds"] = ("r1", "r2")
    assert asyncio.run(contract.get_all_record_ids()) == ["r1", "r2"]


def test_is_available(contract, chain):
    chain.views["isAvailable"] = True
    assert asyncio.run(contract.is_available()) is True

    chain.connected = False
    assert asyncio.run(contract.is_available()) is False
