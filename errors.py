from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

import requests
from web3.exceptions import Web3Exception


@dataclass
class AppError(Exception):
    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": dict(self.data)}


class InvalidInput(AppError):
    """Bad user-supplied value. Raised before any side effect happens."""

    def __init__(self, message: str, *, field_name: str | None = None) -> None:
        data = {"field": field_name} if field_name else {}
        super().__init__("invalid_input", message, data)


class ChainReadError(AppError):
    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__("chain_read_error", message, data or {})


class SignerTransportError(AppError):
    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__("signer_transport_error", message, data or {})


class BroadcastError(AppError):
    """
    The network refused the signed payload (or could not be reached).

    `nonce_related` marks rejections where the signed transaction can never be
    accepted again and a fresh session is required.
    """

    def __init__(self, reason: str, *, nonce_related: bool = False) -> None:
        super().__init__("broadcast_error", reason, {"reason": reason, "nonce_related": nonce_related})
        self.reason = reason
        self.nonce_related = nonce_related


class InvalidSignature(AppError):
    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__("invalid_signature", message, data or {})


class SessionBusy(AppError):
    def __init__(self, address: str, active_session_id: str) -> None:
        super().__init__(
            "session_busy",
            f"A send from {address} is already in progress.",
            {"address": address, "active_session_id": active_session_id},
        )


class SessionNotFound(AppError):
    def __init__(self, session_id: str) -> None:
        super().__init__("session_not_found", f"Unknown session: {session_id}", {"session_id": session_id})


class IllegalTransition(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            "illegal_transition",
            f"Cannot move session from {current} to {target}",
            {"from": current, "to": target},
        )


class KeyNotFound(AppError):
    def __init__(self, key_id: str) -> None:
        super().__init__("key_not_found", f"Key not found: {key_id}", {"key_id": key_id})


class AddressNotReady(AppError):
    def __init__(self, key_id: str, address_type: str) -> None:
        super().__init__(
            "address_not_ready",
            f"Address of type {address_type} for key {key_id} is not derived yet",
            {"key_id": key_id, "address_type": address_type},
        )


class KeyServiceError(AppError):
    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__("key_service_error", message, data or {})


def classify_exception(e: Exception) -> AppError:
    """
    Map common requests / web3 issues into stable error codes.
    """
    if isinstance(e, AppError):
        return e
    if isinstance(e, requests.Timeout):
        return AppError("http_timeout", str(e), {})
    if isinstance(e, requests.ConnectionError):
        return AppError("http_connection_error", str(e), {})
    if isinstance(e, requests.HTTPError):
        status = e.response.status_code if e.response is not None else None
        return AppError("http_error", str(e), {"status": status})
    if isinstance(e, Web3Exception):
        return AppError("web3_error", str(e), {})
    if isinstance(e, ValueError):
        return AppError("value_error", str(e), {})

    return AppError("unknown_error", str(e), {})
