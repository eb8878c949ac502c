from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from errors import InvalidInput
from execution.evm import is_address, parse_ether, to_checksum


@dataclass(frozen=True)
class SendParams:
    value_wei: int
    gas_limit: int
    to_address: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value_wei": str(self.value_wei), "gas_limit": self.gas_limit, "to_address": self.to_address}


def parse_gas_limit(raw: Any, default: int) -> int:
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return int(default)
    if isinstance(raw, bool):
        raise InvalidInput("gas limit must be an integer", field_name="gasLimit")
    if isinstance(raw, int):
        gas = raw
    else:
        s = str(raw).strip()
        if not (s.isascii() and s.isdigit()):
            raise InvalidInput(f"gas limit must be a positive integer: {raw!r}", field_name="gasLimit")
        gas = int(s)
    if gas <= 0:
        raise InvalidInput("gas limit must be positive", field_name="gasLimit")
    return gas


def parse_send_form(amount: Any, gas_limit: Any, to_address: Any, *, default_gas_limit: int = 21000) -> SendParams:
    """
    Validate the withdraw form (amount in ether, gas limit, recipient).

    Pure: no network access, so a bad form never reaches the chain or the signer.
    """
    try:
        value_wei = parse_ether(str(amount) if amount is not None else "")
    except ValueError as e:
        raise InvalidInput(str(e), field_name="amount") from e

    gas = parse_gas_limit(gas_limit, default_gas_limit)

    to = str(to_address or "").strip()
    if not to:
        raise InvalidInput("recipient address is required", field_name="toAddr")
    if not is_address(to):
        raise InvalidInput(f"invalid recipient address: {to!r}", field_name="toAddr")

    return SendParams(value_wei=value_wei, gas_limit=gas, to_address=to_checksum(to))
