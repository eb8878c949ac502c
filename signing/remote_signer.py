from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, Optional

import requests

from errors import SignerTransportError
from observability import Metrics, build_log_context, log_event

from .base import PendingSignature, SignerChannel, SigningRequest, SignOutcome

SIGNER_CTX = build_log_context(component="remote_signer")


def _hex_to_bytes(v: Any) -> bytes:
    s = str(v or "").strip()
    if s.startswith("0x"):
        s = s[2:]
    return bytes.fromhex(s)


def _json_object(r: requests.Response) -> Dict[str, Any]:
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object from signer, got {type(data).__name__}")
    return data


def parse_outcome(data: Dict[str, Any]) -> Optional[SignOutcome]:
    """
    Map a poll response to an outcome, or None while still pending.

    {"signature": "0x.."} | {"rejected": true} | {"error": "..."} | {"pending": true}
    """
    if data.get("signature"):
        try:
            return SignOutcome.approved(_hex_to_bytes(data["signature"]))
        except ValueError:
            return SignOutcome.error("signer returned a non-hex signature")
    if data.get("rejected"):
        return SignOutcome.rejected(str(data.get("reason") or "") or None)
    if data.get("error"):
        return SignOutcome.error(str(data["error"]))
    return None


class RemoteSignerChannel(SignerChannel):
    """
    Remote approval service spoken to over HTTP JSON.

    Protocol:
    POST {SIGNER_SERVICE_URL}/signature-requests
        body: SigningRequest.to_dict()
        response: {"id": "<remote id>"}
    GET  {SIGNER_SERVICE_URL}/signature-requests/{id}
        response: {"pending": true} | {"signature": "0x.."} | {"rejected": true} | {"error": "..."}

    The approval itself happens out of band (a human confirms in the signer's UI),
    so submit returns as soon as the request is accepted and a daemon thread polls
    for the outcome. Transport errors during polling are tolerated until the
    timeout; the timeout itself resolves the request as an error.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        url_env: str = "SIGNER_SERVICE_URL",
        poll_interval_sec: float = 2.0,
        timeout_sec: float = 300.0,
        http_timeout_sec: float = 10.0,
        api_token: str | None = None,
        session: requests.Session | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        url = (base_url or os.getenv(url_env) or "").strip()
        if not url:
            raise ValueError(f"{url_env} environment variable not set")
        self._base_url = url.rstrip("/")
        self._poll_interval = max(0.01, float(poll_interval_sec))
        self._timeout = float(timeout_sec)
        self._http_timeout = float(http_timeout_sec)
        self._http = session or requests.Session()
        if api_token:
            self._http.headers["Authorization"] = f"Bearer {api_token}"
        self._metrics = metrics
        self._lock = threading.Lock()
        self._stops: Dict[str, threading.Event] = {}
        self._closed = threading.Event()

    def submit(self, request: SigningRequest) -> PendingSignature:
        try:
            r = self._http.post(
                f"{self._base_url}/signature-requests",
                json=request.to_dict(),
                timeout=self._http_timeout,
            )
            r.raise_for_status()
            data = _json_object(r)
        except (requests.RequestException, ValueError) as e:
            if self._metrics:
                self._metrics.inc("signer_submit_error_total", 1)
            raise SignerTransportError(
                f"Signer did not accept the request: {e}", {"request_id": request.request_id}
            ) from e

        remote_id = str(data.get("id") or "").strip()
        if not remote_id:
            raise SignerTransportError("Signer did not return a request id", {"request_id": request.request_id})

        stop = threading.Event()
        with self._lock:
            self._stops[request.request_id] = stop
        pending = PendingSignature(request.request_id, on_cancel=stop.set)

        # an immediate answer (pre-approved or rejected on submit) skips polling
        immediate = parse_outcome(data)
        if immediate is not None:
            self._finish(pending, immediate, remote_id)
            return pending

        t = threading.Thread(
            target=self._poll,
            args=(pending, remote_id, stop),
            name=f"signer-poll-{request.request_id[:8]}",
            daemon=True,
        )
        t.start()
        if self._metrics:
            self._metrics.inc("signer_submit_total", 1)
        log_event(
            "signature_requested",
            ctx=SIGNER_CTX,
            data={"request_id": request.request_id, "remote_id": remote_id, "key_id": request.key_id},
        )
        return pending

    def close(self) -> None:
        self._closed.set()
        with self._lock:
            stops = list(self._stops.values())
        for stop in stops:
            stop.set()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._stops)

    def _fetch(self, remote_id: str) -> Dict[str, Any]:
        r = self._http.get(f"{self._base_url}/signature-requests/{remote_id}", timeout=self._http_timeout)
        r.raise_for_status()
        return _json_object(r)

    def _finish(self, pending: PendingSignature, outcome: SignOutcome, remote_id: str) -> None:
        with self._lock:
            self._stops.pop(pending.request_id, None)
        delivered = pending.resolve(outcome)
        log_event(
            "signature_outcome" if delivered else "signature_outcome_dropped",
            ctx=SIGNER_CTX,
            data={"request_id": pending.request_id, "remote_id": remote_id, "status": outcome.status.value},
        )

    def _poll(self, pending: PendingSignature, remote_id: str, stop: threading.Event) -> None:
        deadline = time.monotonic() + self._timeout
        last_error: Optional[str] = None
        while not stop.is_set() and not self._closed.is_set():
            try:
                outcome = parse_outcome(self._fetch(remote_id))
            except (requests.RequestException, ValueError) as e:
                last_error = str(e)
                outcome = None
                if self._metrics:
                    self._metrics.inc("signer_poll_error_total", 1)
            if outcome is not None:
                self._finish(pending, outcome, remote_id)
                return
            if time.monotonic() >= deadline:
                reason = "timeout" if last_error is None else f"timeout (last error: {last_error})"
                self._finish(pending, SignOutcome.error(reason), remote_id)
                return
            stop.wait(self._poll_interval)

        with self._lock:
            self._stops.pop(pending.request_id, None)
        if self._closed.is_set() and not pending.cancelled():
            pending.resolve(SignOutcome.error("signer channel closed"))
