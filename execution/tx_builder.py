"""Assemble unsigned EIP-1559 native transfers from live chain state."""

from __future__ import annotations

from errors import InvalidInput
from observability import build_log_context, log_event

from .chain_reader import ChainReader
from .evm import UINT256_MAX, is_address, to_checksum
from .transaction import DYNAMIC_FEE_TX_TYPE, UnsignedTransaction

BUILDER_CTX = build_log_context(component="tx_builder")


def _validate(chain_id: int, sender: str, recipient: str, value_wei: int, gas_limit: int) -> None:
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        raise InvalidInput("chain id must be a positive integer", field_name="chainId")
    if not is_address(sender):
        raise InvalidInput(f"invalid sender address: {sender!r}", field_name="from")
    if not is_address(recipient):
        raise InvalidInput(f"invalid recipient address: {recipient!r}", field_name="toAddr")
    if isinstance(value_wei, bool) or not isinstance(value_wei, int) or value_wei < 0:
        raise InvalidInput("value must be a non-negative integer", field_name="amount")
    if value_wei > UINT256_MAX:
        raise InvalidInput("value exceeds uint256", field_name="amount")
    if isinstance(gas_limit, bool) or not isinstance(gas_limit, int) or gas_limit <= 0:
        raise InvalidInput("gas limit must be a positive integer", field_name="gasLimit")


class TransactionBuilder:
    def __init__(self, chain_reader: ChainReader) -> None:
        self._reader = chain_reader

    def build(self, chain_id: int, sender: str, recipient: str, value_wei: int, gas_limit: int) -> UnsignedTransaction:
        """
        Build a dynamic-fee transfer for `sender`.

        Input is validated before any network access. Nonce and fees are read on
        every call so the result reflects the latest confirmed state; lookup failures
        propagate as ChainReadError.
        """
        _validate(chain_id, sender, recipient, value_wei, gas_limit)

        nonce = self._reader.get_nonce(sender)
        fees = self._reader.get_fee_parameters()

        tx = UnsignedTransaction(
            chain_id=chain_id,
            nonce=nonce,
            max_priority_fee_per_gas=fees.max_priority_fee_per_gas,
            max_fee_per_gas=fees.max_fee_per_gas,
            gas=gas_limit,
            to=to_checksum(recipient),
            value=value_wei,
            tx_type=DYNAMIC_FEE_TX_TYPE,
        )
        log_event(
            "tx_built",
            ctx=BUILDER_CTX,
            data={"from": to_checksum(sender), "nonce": nonce, "chain_id": chain_id, **fees.to_dict()},
            level="debug",
        )
        return tx
