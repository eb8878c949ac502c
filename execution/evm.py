from __future__ import annotations

from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Dict

from web3 import Web3
from web3.providers.rpc import HTTPProvider

UINT256_MAX = 2**256 - 1
ETHER_DECIMALS = 18

CHAIN_ID_BY_NAME: Dict[str, int] = {
    "ethereum": 1,
    "sepolia": 11155111,
    "holesky": 17000,
    "base": 8453,
    "arbitrum": 42161,
    "optimism": 10,
}


@lru_cache(maxsize=16)
def get_web3(rpc_url: str, timeout: float = 10.0) -> Web3:
    """
    Cached Web3 instance per RPC URL.

    No connectivity check here: the first real call surfaces transport errors, which the
    callers map into their own error types.
    """
    url = (rpc_url or "").strip()
    if not url:
        raise ValueError("Missing RPC URL. Set EVM_RPC_URL.")
    return Web3(HTTPProvider(url, request_kwargs={"timeout": float(timeout)}))


def parse_ether(amount: str) -> int:
    """
    Convert a decimal ether string ("1.5") into wei, exactly.

    Rejects negatives, non-finite values and more than 18 significant fractional
    digits instead of silently rounding. Trailing zeros do not count.
    """
    s = (amount or "").strip()
    if not s:
        raise ValueError("amount is required")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError(f"amount is not a decimal number: {amount!r}") from None
    if not d.is_finite():
        raise ValueError("amount must be finite")
    if d < 0:
        raise ValueError("amount must be >= 0")
    if d.is_zero():
        return 0
    # 2**256 wei is below 10**60 ether
    if d.adjusted() > 77:
        raise ValueError("amount exceeds uint256")
    _, digits, exponent = d.as_tuple()
    digits = list(digits)
    while exponent < 0 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if exponent < -ETHER_DECIMALS:
        raise ValueError(f"amount has more than {ETHER_DECIMALS} decimal places")
    wei = int("".join(map(str, digits))) * 10 ** (exponent + ETHER_DECIMALS)
    if wei > UINT256_MAX:
        raise ValueError("amount exceeds uint256")
    return wei


def format_ether(wei: int) -> str:
    value = Web3.from_wei(int(wei), "ether")
    s = format(value, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


def is_address(s: str) -> bool:
    v = (s or "").strip()
    if not (v.startswith("0x") and len(v) == 42):
        return False
    return bool(Web3.is_address(v))


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address.strip())
