from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

from web3 import Web3

from errors import BroadcastError
from observability import build_log_context, log_event

from .evm import get_web3
from .transaction import SignedTransaction

BROADCAST_CTX = build_log_context(component="broadcaster")

_NONCE_MARKERS = (
    "nonce too low",
    "nonce too high",
    "invalid nonce",
    "already known",
    "replacement transaction underpriced",
    "known transaction",
)


@dataclass(frozen=True)
class BroadcastReceipt:
    tx_hash: str
    chain_id: int
    nonce: int
    broadcast_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "chain_id": self.chain_id,
            "nonce": self.nonce,
            "broadcast_at": self.broadcast_at,
        }


def rejection_reason(e: Exception) -> str:
    """
    Extract the node's message from a JSON-RPC error.

    web3 raises with the RPC error object as first argument
    (`{"code": -32000, "message": "nonce too low"}`) or with a plain string.
    """
    rpc_response = getattr(e, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        msg = rpc_response["error"].get("message")
        if msg:
            return str(msg)
    if e.args and isinstance(e.args[0], dict):
        msg = e.args[0].get("message")
        if msg:
            return str(msg)
    return str(e) or type(e).__name__


def is_nonce_related(reason: str) -> bool:
    r = (reason or "").lower()
    return any(m in r for m in _NONCE_MARKERS)


class Broadcaster:
    """
    Sends fully signed transactions straight to the node (`eth_sendRawTransaction`).

    No retries and no deduplication; the node decides whether a repeated payload is
    accepted or rejected.
    """

    def __init__(self, rpc_url: str | None, *, timeout: float = 10.0, w3: Web3 | None = None) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._w3 = w3

    def _web3(self) -> Web3:
        if self._w3 is not None:
            return self._w3
        return get_web3(self._rpc_url or "", self._timeout)

    def broadcast(self, signed: SignedTransaction) -> BroadcastReceipt:
        raw = signed.serialized
        local_hash = signed.tx_hash
        try:
            w3 = self._web3()
            node_hash = Web3.to_hex(w3.eth.send_raw_transaction(raw))
        except Exception as e:
            reason = rejection_reason(e)
            nonce_related = is_nonce_related(reason)
            log_event(
                "broadcast_rejected",
                ctx=BROADCAST_CTX,
                data={"tx_hash": local_hash, "reason": reason, "nonce_related": nonce_related},
                level="warning",
            )
            raise BroadcastError(reason, nonce_related=nonce_related) from e

        if node_hash.lower() != local_hash.lower():
            log_event(
                "broadcast_hash_mismatch",
                ctx=BROADCAST_CTX,
                data={"local": local_hash, "node": node_hash},
                level="warning",
            )
        log_event("broadcast_accepted", ctx=BROADCAST_CTX, data={"tx_hash": node_hash})
        return BroadcastReceipt(
            tx_hash=node_hash,
            chain_id=signed.unsigned.chain_id,
            nonce=signed.unsigned.nonce,
            broadcast_at=time.time(),
        )
