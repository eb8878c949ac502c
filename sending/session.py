from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from errors import AppError, IllegalTransition
from execution.broadcaster import BroadcastReceipt
from execution.transaction import SignedTransaction, UnsignedTransaction
from signing.base import PendingSignature, SigningRequest


class SessionState(Enum):
    IDLE = "idle"
    BUILDING = "building"
    AWAITING_APPROVAL = "awaiting_approval"
    SIGNED = "signed"
    BROADCASTING = "broadcasting"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATES: FrozenSet[SessionState] = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.REJECTED, SessionState.CANCELLED}
)

_FAILURE_EXITS = {SessionState.FAILED, SessionState.REJECTED, SessionState.CANCELLED}

TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.BUILDING, SessionState.CANCELLED}),
    SessionState.BUILDING: frozenset({SessionState.AWAITING_APPROVAL} | _FAILURE_EXITS),
    SessionState.AWAITING_APPROVAL: frozenset({SessionState.SIGNED} | _FAILURE_EXITS),
    SessionState.SIGNED: frozenset({SessionState.BROADCASTING, SessionState.FAILED}),
    # the payload may already be on the wire: no cancellation past this point
    SessionState.BROADCASTING: frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.REJECTED}),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
    SessionState.REJECTED: frozenset(),
    SessionState.CANCELLED: frozenset(),
}


@dataclass
class SigningSession:
    """
    One user-initiated send, from submit to a terminal outcome.

    Owned and mutated by SendCoordinator under its lock; everything else reads
    snapshots through `to_dict()`.
    """

    session_id: str
    key_id: str
    sender: str
    state: SessionState = SessionState.IDLE
    unsigned_tx: Optional[UnsignedTransaction] = None
    request: Optional[SigningRequest] = None
    signed_tx: Optional[SignedTransaction] = None
    receipt: Optional[BroadcastReceipt] = None
    error: Optional[AppError] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    pending: Optional[PendingSignature] = field(default=None, repr=False)

    @property
    def request_id(self) -> Optional[str]:
        return self.request.request_id if self.request else None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise IllegalTransition(self.state.value, target.value)
        self.state = target
        self.updated_at = time.time()

    def fail(self, error: AppError) -> None:
        self.transition(SessionState.FAILED)
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "key_id": self.key_id,
            "sender": self.sender,
            "state": self.state.value,
            "terminal": self.terminal,
            "request_id": self.request_id,
            "tx": self.unsigned_tx.to_dict() if self.unsigned_tx else None,
            "receipt": self.receipt.to_dict() if self.receipt else None,
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
