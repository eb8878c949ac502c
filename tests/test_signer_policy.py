from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.core.settings import Settings
from conftest import RECIPIENT
from execution.transaction import UnsignedTransaction
from signing.base import SigningRequest, SignMethod
from signing.factory import get_signer_channel
from signing.metadata import ethereum_metadata
from signing.policy import (
    PolicyEnforcedChannel,
    SignerPolicyConfig,
    SignerPolicyViolation,
    policy_config_from_settings,
    validate_tx_against_policy,
)
from signing.remote_signer import RemoteSignerChannel

_OPEN = SignerPolicyConfig(
    allowed_chain_ids=frozenset(),
    allowed_to_addresses=frozenset(),
    max_value_wei=None,
    max_gas=None,
    max_fee_per_gas_wei=None,
)


def _tx(**overrides):
    fields = dict(
        chain_id=1,
        nonce=0,
        max_priority_fee_per_gas=1,
        max_fee_per_gas=100,
        gas=21000,
        to=RECIPIENT,
        value=1000,
    )
    fields.update(overrides)
    return UnsignedTransaction(**fields)


def _request(tx):
    return SigningRequest(
        request_id="r1",
        key_id="1",
        sign_method=SignMethod.ETH,
        payload=tx.serialize_unsigned(),
        metadata=ethereum_metadata(tx.chain_id),
    )


def _cfg(**overrides):
    return replace(_OPEN, **overrides)


@pytest.mark.parametrize(
    "cfg,reason",
    [
        (_cfg(allowed_chain_ids=frozenset({11155111})), "chain_id_not_allowed"),
        (_cfg(allowed_to_addresses=frozenset({"0x" + "11" * 20})), "to_not_allowed"),
        (_cfg(max_value_wei=999), "value_too_large"),
        (_cfg(max_gas=20000), "gas_too_large"),
        (_cfg(max_fee_per_gas_wei=99), "fee_too_large"),
    ],
)
def test_policy_rules(cfg, reason):
    with pytest.raises(SignerPolicyViolation) as e:
        validate_tx_against_policy(_tx(), cfg=cfg)
    assert e.value.code == "policy_blocked"
    assert e.value.reason == reason


def test_signer_policy_blocks_to_address_allowlist():
    inner = MagicMock()
    s = PolicyEnforcedChannel(inner, _cfg(allowed_to_addresses=frozenset({"0x" + "22" * 20})))

    with pytest.raises(SignerPolicyViolation) as e:
        s.submit(_request(_tx()))
    assert e.value.reason == "to_not_allowed"
    inner.submit.assert_not_called()


def test_signer_policy_allows_when_no_rules():
    inner = MagicMock()
    inner.submit.return_value = "pending"
    s = PolicyEnforcedChannel(inner, _OPEN)
    assert s.submit(_request(_tx())) == "pending"


def test_recipient_allowlist_is_case_insensitive():
    inner = MagicMock()
    s = PolicyEnforcedChannel(inner, _cfg(allowed_to_addresses=frozenset({RECIPIENT.lower()})))
    s.submit(_request(_tx()))
    inner.submit.assert_called_once()


def test_undecodable_payload_is_blocked():
    req = SigningRequest(
        request_id="r1", key_id="1", sign_method=SignMethod.ETH, payload=b"\x01", metadata=ethereum_metadata(1)
    )
    with pytest.raises(SignerPolicyViolation) as e:
        PolicyEnforcedChannel(MagicMock(), _OPEN).submit(req)
    assert e.value.reason == "undecodable_payload"


def test_policy_config_from_settings_lowercases_addresses():
    s = SimpleNamespace(
        SIGNER_ALLOWED_CHAIN_IDS=frozenset({1}),
        SIGNER_ALLOWED_TO_ADDRESSES=frozenset({RECIPIENT}),
        SIGNER_MAX_VALUE_WEI=5,
        SIGNER_MAX_GAS=None,
        SIGNER_MAX_FEE_PER_GAS_WEI=None,
    )
    cfg = policy_config_from_settings(s)
    assert cfg.allowed_to_addresses == frozenset({RECIPIENT.lower()})
    assert cfg.max_value_wei == 5


def test_factory_wraps_channel_when_rules_set(monkeypatch):
    monkeypatch.setenv("SIGNER_SERVICE_URL", "http://signer")
    monkeypatch.setenv("SIGNER_MAX_GAS", "100000")
    channel = get_signer_channel(Settings())
    assert isinstance(channel, PolicyEnforcedChannel)


def test_factory_plain_channel_without_rules(monkeypatch):
    monkeypatch.setenv("SIGNER_SERVICE_URL", "http://signer")
    for k in (
        "SIGNER_POLICY_ENABLED",
        "SIGNER_ALLOWED_CHAIN_IDS",
        "SIGNER_ALLOWED_TO_ADDRESSES",
        "SIGNER_MAX_VALUE_WEI",
        "SIGNER_MAX_GAS",
        "SIGNER_MAX_FEE_PER_GAS_WEI",
    ):
        monkeypatch.delenv(k, raising=False)
    channel = get_signer_channel(Settings())
    assert isinstance(channel, RemoteSignerChannel)
