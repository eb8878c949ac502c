"""
Send coordinator: drives SigningSessions from form submit to broadcast.

Three maps, all guarded by one lock:
- session_id -> SigningSession
- request_id -> session_id (only while that request is awaiting its outcome)
- sender address -> session_id of the latest session for that address; at most one
  of those is non-terminal, and starting a new send evicts the previous terminal one

Signer outcomes are matched by request id. Anything that does not map to a session
currently awaiting approval (cancelled, dismissed, already resolved, unknown) is
dropped without touching state.
"""

from __future__ import annotations

import secrets
import threading
from typing import Any, Callable, Dict, List, Optional

from errors import (
    AppError,
    BroadcastError,
    ChainReadError,
    InvalidSignature,
    SessionBusy,
    SessionNotFound,
    SignerTransportError,
)
from execution.broadcaster import Broadcaster
from execution.transaction import SignedTransaction
from execution.tx_builder import TransactionBuilder
from observability import Metrics, build_log_context, log_event
from signing.base import OutcomeStatus, SignerChannel, SigningRequest, SignMethod, SignOutcome
from signing.intents import build_transfer_intent
from signing.keys import AddressType, KeyResolver, normalize_key_id
from signing.metadata import ethereum_metadata

from .form import SendParams, parse_send_form
from .session import SessionState, SigningSession

SessionCallback = Callable[[Dict[str, Any]], None]

COORDINATOR_CTX = build_log_context(component="send_coordinator")


class SendCoordinator:
    def __init__(
        self,
        *,
        chain_id: int,
        builder: TransactionBuilder,
        signer_channel: SignerChannel,
        broadcaster: Broadcaster,
        key_resolver: KeyResolver,
        default_gas_limit: int = 21000,
        metrics: Metrics | None = None,
    ) -> None:
        self._chain_id = int(chain_id)
        self._builder = builder
        self._channel = signer_channel
        self._broadcaster = broadcaster
        self._keys = key_resolver
        self._default_gas_limit = int(default_gas_limit)
        self._metrics = metrics or Metrics()
        self._lock = threading.Lock()
        self._sessions: Dict[str, SigningSession] = {}
        self._by_request: Dict[str, str] = {}
        self._latest_by_address: Dict[str, str] = {}
        self._subscribers: List[SessionCallback] = []

    # ------------------------------------------------------------------ queries

    def get(self, session_id: str) -> SigningSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s.to_dict() for s in self._sessions.values()]

    def active_session_for(self, address: str) -> Optional[SigningSession]:
        with self._lock:
            sid = self._latest_by_address.get(address.lower())
            session = self._sessions.get(sid) if sid else None
            return session if session is not None and not session.terminal else None

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        """`callback(session_snapshot)` after every state change. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # ----------------------------------------------------------------- commands

    def submit(self, key_id: str, amount: Any, to_address: Any, gas_limit: Any = None) -> SigningSession:
        """
        Start a send for the Ethereum address of `key_id`.

        Form errors raise InvalidInput and nothing else happens. A second send for an
        address that already has one in flight raises SessionBusy. Everything after
        the session exists (build, signer, broadcast failures) is recorded on the
        returned session instead of being raised.
        """
        kid = normalize_key_id(key_id)
        params = parse_send_form(amount, gas_limit, to_address, default_gas_limit=self._default_gas_limit)
        sender = self._keys.resolve_address(kid, AddressType.ETHEREUM)

        session = self._open(kid, sender)
        self._build_and_request(session, params)
        return session

    def cancel(self, session_id: str) -> SigningSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if session.terminal:
                return session
            session.transition(SessionState.CANCELLED)
            self._release(session)
            pending = session.pending
        if pending is not None:
            pending.cancel()
        self._metrics.inc("send_sessions_cancelled_total", 1)
        log_event("send_cancelled", ctx=COORDINATOR_CTX, data={"session_id": session_id})
        self._notify(session)
        return session

    def dismiss(self, session_id: str) -> None:
        """Forget a session (the user closed the outcome dialog). Pending ones are cancelled first."""
        session = self.get(session_id)
        if not session.terminal:
            self.cancel(session_id)
        with self._lock:
            self._sessions.pop(session_id, None)
            addr = session.sender.lower()
            if self._latest_by_address.get(addr) == session_id:
                self._latest_by_address.pop(addr, None)
        log_event("send_dismissed", ctx=COORDINATOR_CTX, data={"session_id": session_id})

    def handle_sign_outcome(self, request_id: str, outcome: SignOutcome) -> bool:
        """
        Apply a signer outcome. Returns False when it was dropped as stale.
        """
        signed: Optional[SignedTransaction] = None
        with self._lock:
            sid = self._by_request.get(request_id)
            session = self._sessions.get(sid) if sid else None
            if (
                session is None
                or session.request_id != request_id
                or session.state is not SessionState.AWAITING_APPROVAL
            ):
                stale = True
            else:
                stale = False
                self._by_request.pop(request_id, None)
                signed = self._apply_outcome(session, outcome)
                if signed is None:
                    self._release(session)

        if stale or session is None:
            self._metrics.inc("signer_outcome_dropped_total", 1)
            log_event(
                "signer_outcome_dropped",
                ctx=COORDINATOR_CTX,
                data={"request_id": request_id, "status": outcome.status.value},
                level="debug",
            )
            return False

        self._notify(session)
        if signed is not None:
            with self._lock:
                ready = session.state is SessionState.SIGNED
                if ready:
                    session.transition(SessionState.BROADCASTING)
            if ready:
                self._notify(session)
                self._broadcast(session, signed)
        return True

    # ---------------------------------------------------------------- internals

    def _open(self, key_id: str, sender: str) -> SigningSession:
        addr = sender.lower()
        with self._lock:
            prior_id = self._latest_by_address.get(addr)
            prior = self._sessions.get(prior_id) if prior_id else None
            if prior is not None and not prior.terminal:
                self._metrics.inc("send_sessions_busy_total", 1)
                raise SessionBusy(sender, prior.session_id)
            if prior is not None:
                self._sessions.pop(prior.session_id, None)
            session = SigningSession(session_id=secrets.token_hex(12), key_id=key_id, sender=sender)
            self._sessions[session.session_id] = session
            self._latest_by_address[addr] = session.session_id
            session.transition(SessionState.BUILDING)
        self._metrics.inc("send_sessions_started_total", 1)
        log_event(
            "send_started",
            ctx=COORDINATOR_CTX,
            data={"session_id": session.session_id, "key_id": key_id, "from": sender},
        )
        self._notify(session)
        return session

    def _build_and_request(self, session: SigningSession, params: SendParams) -> None:
        try:
            tx = self._builder.build(
                self._chain_id, session.sender, params.to_address, params.value_wei, params.gas_limit
            )
        except AppError as e:
            self._fail_if(session, SessionState.BUILDING, e)
            return
        except Exception as e:
            self._fail_if(session, SessionState.BUILDING, ChainReadError(f"Failed to build transaction: {e}"))
            return

        try:
            request = SigningRequest(
                request_id=secrets.token_hex(16),
                key_id=session.key_id,
                sign_method=SignMethod.ETH,
                payload=tx.serialize_unsigned(),
                metadata=ethereum_metadata(self._chain_id),
                intent=build_transfer_intent(tx).to_dict(),
            )
        except Exception as e:
            self._fail_if(session, SessionState.BUILDING, ChainReadError(f"Failed to encode transaction: {e}"))
            return
        with self._lock:
            if session.state is not SessionState.BUILDING:
                return
            session.unsigned_tx = tx
            session.request = request

        try:
            pending = self._channel.submit(request)
        except AppError as e:
            self._fail_if(session, SessionState.BUILDING, e)
            return
        except Exception as e:
            self._fail_if(session, SessionState.BUILDING, SignerTransportError(f"Signer submit failed: {e}"))
            return

        with self._lock:
            cancelled = session.state is not SessionState.BUILDING
            if not cancelled:
                session.pending = pending
                session.transition(SessionState.AWAITING_APPROVAL)
                self._by_request[request.request_id] = session.session_id
        if cancelled:
            pending.cancel()
            return

        log_event(
            "send_awaiting_approval",
            ctx=COORDINATOR_CTX,
            data={
                "session_id": session.session_id,
                "request_id": request.request_id,
                "nonce": tx.nonce,
                "value_wei": str(tx.value),
                "to": tx.to,
            },
        )
        self._notify(session)
        pending.add_done_callback(self.handle_sign_outcome)

    def _apply_outcome(self, session: SigningSession, outcome: SignOutcome) -> Optional[SignedTransaction]:
        """Runs under the lock. Returns the signed tx when the session reached SIGNED."""
        if outcome.status is OutcomeStatus.REJECTED:
            session.transition(SessionState.REJECTED)
            self._metrics.inc("send_sessions_rejected_total", 1)
            log_event("send_rejected", ctx=COORDINATOR_CTX, data={"session_id": session.session_id})
            return None

        if outcome.status is OutcomeStatus.ERROR:
            session.fail(SignerTransportError(outcome.reason or "signer error"))
            self._log_failure(session)
            return None

        assert session.unsigned_tx is not None
        try:
            signed = session.unsigned_tx.with_signature(outcome.signature or b"")
            recovered = signed.recover_sender()
        except InvalidSignature as e:
            session.fail(e)
            self._log_failure(session)
            return None
        if recovered.lower() != session.sender.lower():
            session.fail(
                InvalidSignature(
                    "Signature does not match the sender for the payload that was sent",
                    {"expected": session.sender, "recovered": recovered},
                )
            )
            self._log_failure(session)
            return None

        session.signed_tx = signed
        session.transition(SessionState.SIGNED)
        return signed

    def _broadcast(self, session: SigningSession, signed: SignedTransaction) -> None:
        try:
            receipt = self._broadcaster.broadcast(signed)
        except BroadcastError as e:
            self._fail_if(session, SessionState.BROADCASTING, e)
            return
        except Exception as e:
            self._fail_if(session, SessionState.BROADCASTING, BroadcastError(str(e) or type(e).__name__))
            return

        with self._lock:
            if session.state is not SessionState.BROADCASTING:
                return
            session.receipt = receipt
            session.transition(SessionState.COMPLETED)
            self._release(session)
        self._metrics.inc("send_sessions_completed_total", 1)
        log_event(
            "send_completed",
            ctx=COORDINATOR_CTX,
            data={"session_id": session.session_id, "tx_hash": receipt.tx_hash},
        )
        self._notify(session)

    def _fail_if(self, session: SigningSession, expected: SessionState, error: AppError) -> None:
        with self._lock:
            if session.state is not expected:
                return
            session.fail(error)
            self._release(session)
            self._log_failure(session)
        self._notify(session)

    def _log_failure(self, session: SigningSession) -> None:
        self._metrics.inc("send_sessions_failed_total", 1)
        err = session.error
        log_event(
            "send_failed",
            ctx=COORDINATOR_CTX,
            data={
                "session_id": session.session_id,
                "code": err.code if err else None,
                "message": err.message if err else None,
            },
            level="warning",
        )

    def _release(self, session: SigningSession) -> None:
        """Runs under the lock."""
        rid = session.request_id
        if rid is not None and self._by_request.get(rid) == session.session_id:
            self._by_request.pop(rid, None)

    def _notify(self, session: SigningSession) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            snapshot = session.to_dict()
        for cb in subscribers:
            try:
                cb(snapshot)
            except Exception as e:
                log_event("session_subscriber_failed", ctx=COORDINATOR_CTX, data={"error": str(e)}, level="warning")
