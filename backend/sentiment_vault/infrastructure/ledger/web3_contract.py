"""
Web3LedgerContract — adapter for the deployed sentiment ledger contract.

Reads are zero-gas `call()`s; writes are signed by the relayer key and
sent as raw transactions, then awaited for a receipt. web3.py is
synchronous, so each RPC round trip runs in a worker thread via
`asyncio.to_thread` and never blocks the event loop.

Error translation:
    ContractLogicError "Data already verified"  → AlreadyVerified
    ContractLogicError (other)                  → ContractRevertError
    receipt.status == 0                         → ContractRevertError
    connection / timeout failures               → NetworkError
    RPC rejections (nonce, funds, underpriced)  → NetworkError

Writes from the relayer account are serialised: nonce allocation, signing
and broadcast happen under one lock, and the next nonce is tracked
locally so concurrent writes never reuse a nonce. Receipts are awaited
outside the lock.

On-chain the record creator is `msg.sender` (the relayer account); the
submitter identity is carried in the transaction log by the contract.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, List, Optional

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

try:
    from web3.middleware import geth_poa_middleware
except ImportError:
    # Web3.py v7.0.0+ change
    from web3.middleware import ExtraDataToPOAMiddleware as geth_poa_middleware

from sentiment_vault.core.errors import (
    AlreadyVerified,
    ContractRevertError,
    NetworkError,
    is_already_verified,
)
from sentiment_vault.schemas.record import LedgerRecordData

logger = logging.getLogger(__name__)


SENTIMENT_LEDGER_ABI: List[dict] = [
    {
        "type": "function", "name": "createBusinessData", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "businessId", "type": "string"},
            {"name": "name", "type": "string"},
            {"name": "encryptedValue", "type": "bytes32"},
            {"name": "inputProof", "type": "bytes"},
            {"name": "publicValue1", "type": "uint256"},
            {"name": "publicValue2", "type": "uint256"},
            {"name": "description", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "getBusinessData", "stateMutability": "view",
        "inputs": [{"name": "businessId", "type": "string"}],
        "outputs": [
            {"name": "name", "type": "string"},
            {"name": "publicValue1", "type": "uint256"},
            {"name": "publicValue2", "type": "uint256"},
            {"name": "description", "type": "string"},
            {"name": "creator", "type": "address"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "isVerified", "type": "bool"},
            {"name": "decryptedValue", "type": "uint32"},
        ],
    },
    {
        "type": "function", "name": "getEncryptedValue", "stateMutability": "view",
        "inputs": [{"name": "businessId", "type": "string"}],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function", "name": "verifyDecryption", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "businessId", "type": "string"},
            {"name": "abiEncodedClearValue", "type": "bytes"},
            {"name": "decryptionProof", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "getAllBusinessIds", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string[]"}],
    },
    {
        "type": "function", "name": "isAvailable", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


def translate_contract_error(exc: Exception, record_id: str = "") -> Exception:
    """Map a web3.py failure onto the core error taxonomy; unknown errors pass through."""
    if isinstance(exc, ContractLogicError):
        if is_already_verified(exc):
            return AlreadyVerified(record_id)
        reason = getattr(exc, "message", None) or str(exc)
        return ContractRevertError(reason, {"record_id": record_id})
    if isinstance(exc, (ConnectionError, TimeoutError, TimeExhausted, RequestException)):
        return NetworkError(f"Ledger RPC failure: {exc}", {"record_id": record_id})
    if isinstance(exc, Web3Exception) or _is_rpc_error_payload(exc):
        # Node-side rejection: nonce too low, insufficient funds, underpriced replacement
        return NetworkError(f"Ledger RPC rejected the request: {exc}", {"record_id": record_id})
    return exc


def _is_rpc_error_payload(exc: Exception) -> bool:
    """Older web3 releases raise ValueError carrying the JSON-RPC error dict."""
    return (
        isinstance(exc, ValueError)
        and bool(exc.args)
        and isinstance(exc.args[0], dict)
        and "message" in exc.args[0]
    )


class Web3LedgerContract:
    """
    Async facade over a deployed sentiment ledger contract.

    Args:
        provider_url: JSON-RPC endpoint.
        address: Deployed contract address.
        private_key: Relayer key that signs write transactions.
        gas_fallback: Gas limit used when estimation fails.
    """

    def __init__(
        self,
        provider_url: str,
        address: str,
        private_key: str,
        gas_fallback: int = 2000000,
        w3: Optional[Web3] = None,
    ) -> None:
        self.w3 = w3 or Web3(Web3.HTTPProvider(provider_url))
        try:
            self.w3.middleware_onion.inject(geth_poa_middleware, layer=0)
        except (TypeError, ValueError) as e:
            # Web3.py v7 (middleware architecture change)
            logger.debug(f"[LEDGER] POA middleware not injected: {e}")

        self.address = Web3.to_checksum_address(address)
        self.account = self.w3.eth.account.from_key(private_key)
        self._private_key = private_key
        self._gas_fallback = gas_fallback
        self._tx_lock = threading.Lock()
        self._next_nonce: Optional[int] = None
        self.contract = self.w3.eth.contract(address=self.address, abi=SENTIMENT_LEDGER_ABI)

    # ── Writes ──

    async def create_record(
        self,
        record_id: str,
        name: str,
        encrypted_value: str,
        input_proof: str,
        public_value1: int,
        public_value2: int,
        description: str,
        sender: str,
    ) -> str:
        func = self.contract.functions.createBusinessData(
            record_id,
            name,
            Web3.to_bytes(hexstr=encrypted_value),
            Web3.to_bytes(hexstr=input_proof),
            public_value1,
            public_value2,
            description,
        )
        logger.info(f"[LEDGER] createBusinessData {record_id} for submitter {sender}")
        return await self._run(lambda: self._transact(func, "createBusinessData"), record_id)

    async def attest_decryption(
        self,
        record_id: str,
        abi_encoded_clear_values: str,
        decryption_proof: str,
        sender: str,
    ) -> str:
        func = self.contract.functions.verifyDecryption(
            record_id,
            Web3.to_bytes(hexstr=abi_encoded_clear_values),
            Web3.to_bytes(hexstr=decryption_proof),
        )
        logger.info(f"[LEDGER] verifyDecryption {record_id} requested by {sender}")
        return await self._run(lambda: self._transact(func, "verifyDecryption"), record_id)

    # ── Reads ──

    async def get_record(self, record_id: str) -> LedgerRecordData:
        raw = await self._run(
            lambda: self.contract.functions.getBusinessData(record_id).call(), record_id,
        )
        name, v1, v2, description, creator, timestamp, is_verified, decrypted = raw
        encrypted_value = await self.get_encrypted_handle(record_id)
        return LedgerRecordData(
            id=record_id,
            name=name,
            encrypted_value=encrypted_value,
            public_value1=int(v1),
            public_value2=int(v2),
            description=description,
            creator=creator,
            timestamp=float(timestamp),
            is_verified=bool(is_verified),
            decrypted_value=int(decrypted),
        )

    async def get_encrypted_handle(self, record_id: str) -> str:
        raw = await self._run(
            lambda: self.contract.functions.getEncryptedValue(record_id).call(), record_id,
        )
        return Web3.to_hex(raw)

    async def get_all_record_ids(self) -> List[str]:
        return list(await self._run(lambda: self.contract.functions.getAllBusinessIds().call()))

    async def is_available(self) -> bool:
        if not await asyncio.to_thread(self.w3.is_connected):
            return False
        return bool(await self._run(lambda: self.contract.functions.isAvailable().call()))

    # ── Internals ──

    async def _run(self, fn: Callable[[], Any], record_id: str = "") -> Any:
        try:
            return await asyncio.to_thread(fn)
        except Exception as exc:
            translated = translate_contract_error(exc, record_id)
            if translated is exc:
                raise
            raise translated from exc

    def _transact(self, func, label: str) -> str:
        try:
            gas_estimate = func.estimate_gas({"from": self.account.address})
            gas_limit = int(gas_estimate * 1.2)  # 20% buffer
        except ContractLogicError:
            raise
        except Exception as e:
            logger.warning(f"[LEDGER] Gas estimation failed for {label}, using fallback: {e}")
            gas_limit = self._gas_fallback

        with self._tx_lock:
            nonce = self._allocate_nonce()
            tx_data = func.build_transaction({
                "chainId": self.w3.eth.chain_id,
                "gas": gas_limit,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": nonce,
            })
            signed_tx = self.w3.eth.account.sign_transaction(tx_data, self._private_key)
            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            except Exception:
                # Re-read from the node on the next write
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1
        logger.info(f"[LEDGER] {label} TX sent: {self.w3.to_hex(tx_hash)}")

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt.status != 1:
            raise ContractRevertError(f"{label} reverted on-chain", {"tx": self.w3.to_hex(tx_hash)})
        return self.w3.to_hex(tx_hash)

    def _allocate_nonce(self) -> int:
        """Next relayer nonce; caller holds `_tx_lock`."""
        pending = self.w3.eth.get_transaction_count(self.account.address, "pending")
        if self._next_nonce is None:
            return pending
        return max(pending, self._next_nonce)
