import json
from typing import Any, Dict

from fastmcp import FastMCP

from app.core.container import global_container
from errors import AppError, classify_exception
from signing import AddressType, normalize_key_id


def _json_ok(data: Dict[str, Any] | None = None) -> str:
    payload = {"ok": True, "data": data or {}}
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def _json_err(code: str, message: str, data: Dict[str, Any] | None = None) -> str:
    payload = {"ok": False, "error": {"code": code, "message": message, "data": data or {}}}
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def _json_app_err(e: Exception) -> str:
    err = e if isinstance(e, AppError) else classify_exception(e)
    return _json_err(err.code, err.message, err.data)


# Module-level functions for testing


def send_eth(key_id: str, amount: str, to_address: str, gas_limit: str = "") -> str:
    """
    Send ETH from the address derived for `key_id`.

    Builds the transaction from live chain state and submits it to the remote signer.
    Returns immediately with the session; poll get_send_status until it is terminal.
    """
    try:
        session = global_container.coordinator.submit(key_id, amount, to_address, gas_limit or None)
    except Exception as e:
        return _json_app_err(e)
    return _json_ok({"session": session.to_dict()})


def get_send_status(session_id: str) -> str:
    """Current state of a send session."""
    try:
        session = global_container.coordinator.get(session_id)
    except Exception as e:
        return _json_app_err(e)
    return _json_ok({"session": session.to_dict()})


def cancel_send(session_id: str) -> str:
    """Abandon a send that is still waiting for approval. A late signature is ignored."""
    try:
        session = global_container.coordinator.cancel(session_id)
    except Exception as e:
        return _json_app_err(e)
    return _json_ok({"session": session.to_dict()})


def dismiss_send(session_id: str) -> str:
    """Forget a finished send so a new one can be started."""
    try:
        global_container.coordinator.dismiss(session_id)
    except Exception as e:
        return _json_app_err(e)
    return _json_ok({"session_id": session_id, "dismissed": True})


def get_eth_balance(key_id: str) -> str:
    """Latest ETH balance of the address derived for `key_id` (refreshed in the background)."""
    try:
        kid = normalize_key_id(key_id)
        address = global_container.key_resolver.resolve_address(kid, AddressType.ETHEREUM)
        watcher = global_container.balance_watcher(address)
        if watcher.latest() is None:
            watcher.poll_once()
        return _json_ok(watcher.status())
    except Exception as e:
        return _json_app_err(e)


def register_send_tools(mcp: FastMCP):
    mcp.tool(send_eth)
    mcp.tool(get_send_status)
    mcp.tool(cancel_send)
    mcp.tool(dismiss_send)
    mcp.tool(get_eth_balance)
