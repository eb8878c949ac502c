from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

from errors import AppError
from execution.transaction import UnsignedTransaction, decode_unsigned

from .base import PendingSignature, SignerChannel, SigningRequest


class SignerPolicyViolation(AppError):
    def __init__(self, reason: str, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__("policy_blocked", message, {"reason": reason, **(data or {})})
        self.reason = reason


@dataclass(frozen=True)
class SignerPolicyConfig:
    allowed_chain_ids: FrozenSet[int]
    allowed_to_addresses: FrozenSet[str]
    max_value_wei: Optional[int]
    max_gas: Optional[int]
    max_fee_per_gas_wei: Optional[int]


def policy_config_from_settings(s: Any) -> SignerPolicyConfig:
    """
    All rules are opt-in; an empty config allows everything.
    """
    return SignerPolicyConfig(
        allowed_chain_ids=frozenset(s.SIGNER_ALLOWED_CHAIN_IDS),
        allowed_to_addresses=frozenset(a.lower() for a in s.SIGNER_ALLOWED_TO_ADDRESSES),
        max_value_wei=s.SIGNER_MAX_VALUE_WEI,
        max_gas=s.SIGNER_MAX_GAS,
        max_fee_per_gas_wei=s.SIGNER_MAX_FEE_PER_GAS_WEI,
    )


def validate_tx_against_policy(tx: UnsignedTransaction, *, cfg: SignerPolicyConfig) -> None:
    if cfg.allowed_chain_ids and tx.chain_id not in cfg.allowed_chain_ids:
        raise SignerPolicyViolation(
            "chain_id_not_allowed",
            "Transaction chain_id is not allowlisted by signer policy.",
            {"chain_id": tx.chain_id, "allowed_chain_ids": sorted(cfg.allowed_chain_ids)},
        )

    if cfg.allowed_to_addresses and tx.to.lower() not in cfg.allowed_to_addresses:
        raise SignerPolicyViolation(
            "to_not_allowed",
            "Transaction recipient is not allowlisted by signer policy.",
            {"to": tx.to, "allowed_to_addresses": sorted(cfg.allowed_to_addresses)},
        )

    if cfg.max_value_wei is not None and tx.value > int(cfg.max_value_wei):
        raise SignerPolicyViolation(
            "value_too_large",
            "Transaction value exceeds signer policy limit.",
            {"value_wei": str(tx.value), "max_value_wei": str(cfg.max_value_wei)},
        )

    if cfg.max_gas is not None and tx.gas > int(cfg.max_gas):
        raise SignerPolicyViolation(
            "gas_too_large",
            "Transaction gas exceeds signer policy limit.",
            {"gas": tx.gas, "max_gas": int(cfg.max_gas)},
        )

    if cfg.max_fee_per_gas_wei is not None and tx.max_fee_per_gas > int(cfg.max_fee_per_gas_wei):
        raise SignerPolicyViolation(
            "fee_too_large",
            "Transaction maxFeePerGas exceeds signer policy limit.",
            {"max_fee_per_gas": str(tx.max_fee_per_gas), "max_fee_per_gas_wei": str(cfg.max_fee_per_gas_wei)},
        )


class PolicyEnforcedChannel(SignerChannel):
    """
    Wrap a signer channel with local policy enforcement.

    The check runs on the decoded payload, i.e. on exactly what would be signed.
    """

    def __init__(self, inner: SignerChannel, cfg: SignerPolicyConfig) -> None:
        self._inner = inner
        self._cfg = cfg

    def submit(self, request: SigningRequest) -> PendingSignature:
        try:
            tx = decode_unsigned(request.payload)
        except ValueError as e:
            raise SignerPolicyViolation("undecodable_payload", f"Payload cannot be checked: {e}") from e
        validate_tx_against_policy(tx, cfg=self._cfg)
        return self._inner.submit(request)

    def close(self) -> None:
        self._inner.close()
