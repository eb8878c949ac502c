from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import CancelledError, Future, InvalidStateError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional


class SignMethod(Enum):
    ETH = "SIGN_METHOD_ETH"


@dataclass(frozen=True)
class SignMetadata:
    """Type-namespaced metadata attached to a request (protobuf Any: type_url + value)."""

    type_url: str
    value: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"type_url": self.type_url, "value": "0x" + self.value.hex()}


@dataclass(frozen=True)
class SigningRequest:
    """
    One request for approval of `payload`.

    `request_id` is the local correlation id used to match the asynchronous outcome
    to the session that issued it. Requests are never resent.
    """

    request_id: str
    key_id: str
    sign_method: SignMethod
    payload: bytes
    metadata: SignMetadata
    intent: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "request_id": self.request_id,
            "key_id": self.key_id,
            "sign_method": self.sign_method.value,
            "payload": "0x" + self.payload.hex(),
            "metadata": self.metadata.to_dict(),
        }
        if self.intent is not None:
            out["intent"] = dict(self.intent)
        return out


class OutcomeStatus(Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class SignOutcome:
    status: OutcomeStatus
    signature: Optional[bytes] = None
    reason: Optional[str] = None

    @classmethod
    def approved(cls, signature: bytes) -> "SignOutcome":
        return cls(OutcomeStatus.APPROVED, signature=bytes(signature))

    @classmethod
    def rejected(cls, reason: str | None = None) -> "SignOutcome":
        return cls(OutcomeStatus.REJECTED, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "SignOutcome":
        return cls(OutcomeStatus.ERROR, reason=reason)


OutcomeCallback = Callable[[str, SignOutcome], None]


class PendingSignature:
    """
    Handle for an outstanding request.

    The outcome is delivered at most once through `resolve`; later calls (including
    ones racing a cancellation) are ignored and reported as False.
    """

    def __init__(self, request_id: str, *, on_cancel: Callable[[], None] | None = None) -> None:
        self.request_id = request_id
        self._future: Future[SignOutcome] = Future()
        self._on_cancel = on_cancel

    def resolve(self, outcome: SignOutcome) -> bool:
        try:
            self._future.set_result(outcome)
        except InvalidStateError:
            return False
        return True

    def cancel(self) -> bool:
        cancelled = self._future.cancel()
        if cancelled and self._on_cancel is not None:
            self._on_cancel()
        return cancelled

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: float | None = None) -> SignOutcome:
        return self._future.result(timeout=timeout)

    def add_done_callback(self, fn: OutcomeCallback) -> None:
        """`fn(request_id, outcome)` runs on whichever thread resolves; never on cancel."""

        def _cb(f: Future[SignOutcome]) -> None:
            try:
                outcome = f.result()
            except CancelledError:
                return
            fn(self.request_id, outcome)

        self._future.add_done_callback(_cb)


class SignerChannel(ABC):
    """
    Remote approval exchange: submit returns immediately with a pending handle, the
    outcome (approved / rejected / error) arrives later on another path.
    """

    @abstractmethod
    def submit(self, request: SigningRequest) -> PendingSignature:
        raise NotImplementedError

    def close(self) -> None:
        """Release background resources (polling threads)."""
        return None
