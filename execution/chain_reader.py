from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, TypeVar

from web3 import Web3

from errors import ChainReadError

from .evm import get_web3, to_checksum

T = TypeVar("T")


@dataclass(frozen=True)
class FeeParameters:
    max_priority_fee_per_gas: int
    max_fee_per_gas: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
            "max_fee_per_gas": self.max_fee_per_gas,
        }


class ChainReader(ABC):
    """
    Read-only view of chain state needed to build and display a send.

    Implementations never cache: every call reflects the node's current view.
    """

    @abstractmethod
    def get_nonce(self, address: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_fee_parameters(self) -> FeeParameters:
        raise NotImplementedError

    @abstractmethod
    def get_balance(self, address: str) -> int:
        raise NotImplementedError


def _as_int(v: Any, *, name: str) -> int:
    if isinstance(v, bool) or v is None:
        raise ValueError(f"Malformed {name}: {v!r}")
    if isinstance(v, str):
        s = v.strip().lower()
        return int(s, 16) if s.startswith("0x") else int(s, 10)
    return int(v)


class Web3ChainReader(ChainReader):
    """
    ChainReader backed by an EVM JSON-RPC endpoint.

    Fee parameters follow the usual wallet heuristic: the priority fee comes from
    `eth_maxPriorityFeePerGas` and the max fee leaves room for the base fee to
    double before inclusion (`2 * baseFee + priority`).
    """

    def __init__(self, rpc_url: str | None, *, timeout: float = 10.0, w3: Web3 | None = None) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._w3 = w3

    def _web3(self) -> Web3:
        if self._w3 is not None:
            return self._w3
        return get_web3(self._rpc_url or "", self._timeout)

    def _read(self, what: str, fn: Callable[[Web3], T]) -> T:
        try:
            return fn(self._web3())
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"Failed to read {what}: {e}", {"what": what}) from e

    def get_nonce(self, address: str) -> int:
        def _nonce(w3: Web3) -> int:
            n = _as_int(w3.eth.get_transaction_count(to_checksum(address), "latest"), name="nonce")
            if n < 0:
                raise ValueError(f"Malformed nonce: {n}")
            return n

        return self._read("nonce", _nonce)

    def get_fee_parameters(self) -> FeeParameters:
        def _fees(w3: Web3) -> FeeParameters:
            priority = _as_int(w3.eth.max_priority_fee, name="maxPriorityFeePerGas")
            block = w3.eth.get_block("latest")
            base_fee = _as_int(block.get("baseFeePerGas"), name="baseFeePerGas")
            return FeeParameters(max_priority_fee_per_gas=priority, max_fee_per_gas=2 * base_fee + priority)

        fees = self._read("fee parameters", _fees)
        if fees.max_priority_fee_per_gas < 0 or fees.max_fee_per_gas < fees.max_priority_fee_per_gas:
            raise ChainReadError("Node returned inconsistent fee parameters", fees.to_dict())
        return fees

    def get_balance(self, address: str) -> int:
        return self._read("balance", lambda w3: _as_int(w3.eth.get_balance(to_checksum(address)), name="balance"))
