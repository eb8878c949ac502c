import os
import sys
from typing import List, Optional

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from eth_keys import keys

from errors import ChainReadError
from execution.chain_reader import ChainReader, FeeParameters
from signing.base import PendingSignature, SignerChannel, SigningRequest, SignOutcome

RECIPIENT = "0x000000000000000000000000000000000000dEaD"


class FakeChainReader(ChainReader):
    def __init__(self, *, nonce=7, priority=1_500_000_000, base_fee=20_000_000_000, balance=10**18):
        self.nonce = nonce
        self.priority = priority
        self.base_fee = base_fee
        self.balance = balance
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def _maybe_fail(self, what):
        self.calls.append(what)
        if self.fail_with is not None:
            raise self.fail_with

    def get_nonce(self, address):
        self._maybe_fail("nonce")
        return self.nonce

    def get_fee_parameters(self):
        self._maybe_fail("fees")
        return FeeParameters(max_priority_fee_per_gas=self.priority, max_fee_per_gas=2 * self.base_fee + self.priority)

    def get_balance(self, address):
        self._maybe_fail("balance")
        return self.balance


class FakeSignerChannel(SignerChannel):
    """Keeps every request; tests resolve the returned handles by hand."""

    def __init__(self):
        self.requests: List[SigningRequest] = []
        self.pendings: List[PendingSignature] = []
        self.immediate: Optional[SignOutcome] = None
        self.submit_error: Optional[Exception] = None

    def submit(self, request):
        if self.submit_error is not None:
            raise self.submit_error
        self.requests.append(request)
        pending = PendingSignature(request.request_id)
        self.pendings.append(pending)
        if self.immediate is not None:
            pending.resolve(self.immediate)
        return pending

    @property
    def last(self) -> PendingSignature:
        return self.pendings[-1]


def sign_payload(private_key, payload: bytes) -> bytes:
    """What an approving signer returns: 65-byte r || s || v over keccak(payload)."""
    from eth_utils import keccak

    return private_key.sign_msg_hash(keccak(payload)).to_bytes()


@pytest.fixture
def private_key():
    return keys.PrivateKey(b"\x11" * 32)


@pytest.fixture
def other_key():
    return keys.PrivateKey(b"\x22" * 32)


@pytest.fixture
def sender(private_key):
    return private_key.public_key.to_checksum_address()


@pytest.fixture
def chain_reader():
    return FakeChainReader()


@pytest.fixture
def signer_channel():
    return FakeSignerChannel()


@pytest.fixture
def failing_chain_reader():
    r = FakeChainReader()
    r.fail_with = ChainReadError("Failed to read nonce: connection refused", {"what": "nonce"})
    return r
