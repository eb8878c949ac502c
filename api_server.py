import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from app.core.container import global_container
from app.core.settings import settings
from errors import AppError, classify_exception
from observability import build_log_context, log_event
from signing import AddressType, normalize_key_id

API_CTX = build_log_context(tool="api_server")

_STATUS_BY_CODE = {
    "invalid_input": 400,
    "session_not_found": 404,
    "key_not_found": 404,
    "session_busy": 409,
    "address_not_ready": 409,
    "illegal_transition": 409,
}

# Active WebSocket connections
active_connections: Set[WebSocket] = set()
_loop: Optional[asyncio.AbstractEventLoop] = None
_balance_subscriptions: Set[str] = set()


async def broadcast_all(payload: dict):
    if not active_connections:
        return
    message = json.dumps(payload, default=str)
    disconnected = set()
    for websocket in active_connections:
        try:
            await websocket.send_text(message)
        except Exception:
            disconnected.add(websocket)

    for ws in disconnected:
        active_connections.discard(ws)


def _push(payload: Dict[str, Any]) -> None:
    """
    Thread-safe fan-out. Session and balance callbacks fire on signer/watcher
    threads, so hand the send over to the server loop.
    """
    loop = _loop
    if loop is None or not loop.is_running() or not active_connections:
        return
    asyncio.run_coroutine_threadsafe(broadcast_all(payload), loop)


def on_session_update(snapshot: Dict[str, Any]) -> None:
    _push({"type": "SESSION_UPDATE", "data": snapshot})


def on_balance_update(address: str, balance_wei: int) -> None:
    _push({"type": "BALANCE_UPDATE", "data": {"address": address, "balance_wei": str(balance_wei)}})


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global _loop
    _loop = asyncio.get_running_loop()
    unsubscribe = None
    try:
        unsubscribe = global_container.coordinator.subscribe(on_session_update)
    except ValueError as e:
        # signer/key service not configured: read-only endpoints still work
        log_event("api_coordinator_unavailable", ctx=API_CTX, data={"error": str(e)}, level="warning")
    log_event("api_server_started", ctx=API_CTX, data={"chain_id": settings.CHAIN_ID})
    try:
        yield
    finally:
        if unsubscribe is not None:
            unsubscribe()
        global_container.shutdown()
        _balance_subscriptions.clear()
        _loop = None
        log_event("api_server_stopped", ctx=API_CTX)


app = FastAPI(title="WalletSend API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: Exception) -> HTTPException:
    err = e if isinstance(e, AppError) else classify_exception(e)
    return HTTPException(status_code=_STATUS_BY_CODE.get(err.code, 502), detail=err.to_dict())


class SendRequest(BaseModel):
    amount: str
    toAddr: str
    gasLimit: str = ""


@app.get("/api/health")
def health_check():
    return {"status": "ok", "chain_id": settings.CHAIN_ID, "chain": settings.CHAIN_NAME}


@app.get("/api/metrics")
def get_metrics():
    return global_container.metrics.snapshot()


@app.post("/api/keys/{key_id}/send")
def submit_send(key_id: str, req: SendRequest):
    """
    Withdraw form submission. Returns as soon as the signature request is out;
    progress is pushed over /ws and readable at /api/sessions/{id}.
    """
    try:
        session = global_container.coordinator.submit(key_id, req.amount, req.toAddr, req.gasLimit or None)
    except Exception as e:
        raise _http_error(e) from e
    return session.to_dict()


@app.get("/api/sessions")
def list_sessions():
    return {"sessions": global_container.coordinator.list_sessions()}


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str):
    try:
        return global_container.coordinator.get(session_id).to_dict()
    except Exception as e:
        raise _http_error(e) from e


@app.post("/api/sessions/{session_id}/cancel")
def cancel_session(session_id: str):
    try:
        return global_container.coordinator.cancel(session_id).to_dict()
    except Exception as e:
        raise _http_error(e) from e


@app.delete("/api/sessions/{session_id}")
def dismiss_session(session_id: str):
    try:
        global_container.coordinator.dismiss(session_id)
    except Exception as e:
        raise _http_error(e) from e
    return {"ok": True}


@app.get("/api/keys/{key_id}/balance")
def get_balance(key_id: str):
    """
    Balance of the key's Ethereum address. The first request starts a background
    watcher for that address; later requests read its latest value.
    """
    try:
        kid = normalize_key_id(key_id)
        address = global_container.key_resolver.resolve_address(kid, AddressType.ETHEREUM)
        watcher = global_container.balance_watcher(address)
        if address not in _balance_subscriptions:
            _balance_subscriptions.add(address)
            watcher.subscribe(on_balance_update)
        if watcher.latest() is None:
            watcher.poll_once()
        return watcher.status()
    except Exception as e:
        raise _http_error(e) from e


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    active_connections.add(websocket)
    log_event("api_client_connected", ctx=API_CTX, data={"active_connections": len(active_connections)})
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        active_connections.discard(websocket)
        log_event("api_client_disconnected", ctx=API_CTX, data={"active_connections": len(active_connections)})


if __name__ == "__main__":
    import uvicorn

    log_event("api_server_starting", ctx=API_CTX, data={"port": settings.API_PORT, "host": settings.API_HOST})
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
