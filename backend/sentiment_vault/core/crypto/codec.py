"""ABI codec for clear-value bundles exchanged with the ledger."""

from typing import List, Sequence

from eth_abi import decode, encode
from web3 import Web3


def encode_clear_values(values: Sequence[int]) -> str:
    """ABI-encode clear values as consecutive uint256 words (0x-hex)."""
    return Web3.to_hex(encode(["uint256"] * len(values), list(values)))


def decode_clear_values(encoded: str, count: int) -> List[int]:
    """Inverse of `encode_clear_values`."""
    raw = Web3.to_bytes(hexstr=encoded)
    return [int(v) for v in decode(["uint256"] * count, raw)]
