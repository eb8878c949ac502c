from unittest.mock import MagicMock

import pytest
from eth_utils import keccak

from conftest import RECIPIENT, sign_payload
from errors import BroadcastError, ChainReadError
from execution.broadcaster import Broadcaster, is_nonce_related, rejection_reason
from execution.chain_reader import Web3ChainReader
from execution.transaction import UnsignedTransaction


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 5
    w3.eth.max_priority_fee = 2_000_000_000
    w3.eth.get_block.return_value = {"baseFeePerGas": 10_000_000_000}
    w3.eth.get_balance.return_value = 42
    return w3


def test_reader_uses_latest_nonce(w3, sender):
    reader = Web3ChainReader(None, w3=w3)
    assert reader.get_nonce(sender.lower()) == 5
    w3.eth.get_transaction_count.assert_called_once_with(sender, "latest")


def test_reader_fee_heuristic(w3):
    fees = Web3ChainReader(None, w3=w3).get_fee_parameters()
    assert fees.max_priority_fee_per_gas == 2_000_000_000
    assert fees.max_fee_per_gas == 22_000_000_000


def test_reader_balance(w3, sender):
    assert Web3ChainReader(None, w3=w3).get_balance(sender) == 42


def test_reader_wraps_transport_errors(w3, sender):
    w3.eth.get_transaction_count.side_effect = ConnectionError("refused")
    with pytest.raises(ChainReadError) as e:
        Web3ChainReader(None, w3=w3).get_nonce(sender)
    assert e.value.data["what"] == "nonce"


def test_reader_rejects_missing_base_fee(w3):
    w3.eth.get_block.return_value = {}
    with pytest.raises(ChainReadError):
        Web3ChainReader(None, w3=w3).get_fee_parameters()


def _signed(private_key):
    tx = UnsignedTransaction(
        chain_id=11155111,
        nonce=3,
        max_priority_fee_per_gas=1,
        max_fee_per_gas=2,
        gas=21000,
        to=RECIPIENT,
        value=1,
    )
    return tx.with_signature(sign_payload(private_key, tx.serialize_unsigned()))


def test_broadcast_sends_exact_bytes(private_key):
    signed = _signed(private_key)
    w3 = MagicMock()
    w3.eth.send_raw_transaction.return_value = keccak(signed.serialized)

    receipt = Broadcaster(None, w3=w3).broadcast(signed)

    w3.eth.send_raw_transaction.assert_called_once_with(signed.serialized)
    assert receipt.tx_hash == signed.tx_hash
    assert receipt.nonce == 3
    assert receipt.chain_id == 11155111


def test_broadcast_rejection_is_classified(private_key):
    w3 = MagicMock()
    w3.eth.send_raw_transaction.side_effect = ValueError({"code": -32000, "message": "nonce too low"})

    with pytest.raises(BroadcastError) as e:
        Broadcaster(None, w3=w3).broadcast(_signed(private_key))
    assert e.value.reason == "nonce too low"
    assert e.value.nonce_related is True


def test_broadcast_other_rejection(private_key):
    w3 = MagicMock()
    w3.eth.send_raw_transaction.side_effect = ValueError("insufficient funds for gas * price + value")

    with pytest.raises(BroadcastError) as e:
        Broadcaster(None, w3=w3).broadcast(_signed(private_key))
    assert e.value.nonce_related is False
    assert e.value.code == "broadcast_error"


def test_rejection_reason_prefers_rpc_message():
    err = Exception("boom")
    err.rpc_response = {"error": {"code": -32000, "message": "already known"}}
    assert rejection_reason(err) == "already known"
    assert is_nonce_related("Replacement transaction underpriced")
    assert not is_nonce_related("execution reverted")
