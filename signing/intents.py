from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from execution.evm import format_ether
from execution.transaction import UnsignedTransaction


@dataclass(frozen=True)
class TransferIntent:
    """
    Human-readable description of what the payload will do once signed.

    Sent next to the opaque payload so that the approval UI and signer-side policy
    can show and check the transfer without decoding RLP. It is a description only;
    the signature always covers the payload bytes.
    """

    intent_type: str  # currently "evm_native_transfer"
    chain_id: int
    to: str
    value_wei: int
    value_eth: str
    nonce: int
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_type": self.intent_type,
            "chain_id": self.chain_id,
            "to": self.to,
            "value_wei": str(self.value_wei),
            "value_eth": self.value_eth,
            "nonce": self.nonce,
            "gas": self.gas,
            "max_fee_per_gas": str(self.max_fee_per_gas),
            "max_priority_fee_per_gas": str(self.max_priority_fee_per_gas),
        }


def build_transfer_intent(tx: UnsignedTransaction) -> TransferIntent:
    return TransferIntent(
        intent_type="evm_native_transfer",
        chain_id=tx.chain_id,
        to=tx.to,
        value_wei=tx.value,
        value_eth=format_ether(tx.value),
        nonce=tx.nonce,
        gas=tx.gas,
        max_fee_per_gas=tx.max_fee_per_gas,
        max_priority_fee_per_gas=tx.max_priority_fee_per_gas,
    )
