"""FastAPI server for the BRP relay.

One port serves both sides: HTTP JSON-RPC callers on ``POST /`` and the
remote peer's duplex WebSocket on ``/{relay.path}``. Shared components live
in ``app_state`` and are either injected by ``install_relay`` (CLI, tests)
or created from config in the lifespan.
"""

from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from loguru import logger

from brprelay import __version__
from brprelay.api.http.jsonrpc_methods import build_call_response, build_watch_response, decode_jsonrpc_body
from brprelay.api.rpc.error_boundary import classify_http_status
from brprelay.api.rpc.ws_relay_methods import (
    CLOSE_POLICY_VIOLATION,
    bootstrap_relay_ws_connection,
    cleanup_relay_ws_connection,
    run_relay_ws_loop,
)
from brprelay.config.access import get_config as get_cached_config
from brprelay.config.schema import Config
from brprelay.relay.broker import RelayBroker
from brprelay.relay.gateway import CallGateway
from brprelay.utils.exceptions import RelayError, classify_exception, sanitize_error_message

app_state: dict[str, Any] = {
    "config": None,
    "broker": None,
    "gateway": None,
}


def install_relay(config: Config, *, broker: RelayBroker | None = None) -> tuple[RelayBroker, CallGateway]:
    """Create (or adopt) the broker and gateway and inject them into app_state."""
    broker = broker or RelayBroker.from_config(config.relay)
    gateway = CallGateway.from_config(broker, config.relay)
    app_state["config"] = config
    app_state["broker"] = broker
    app_state["gateway"] = gateway
    app_state["_relay_injected"] = True
    return broker, gateway


def _relay() -> tuple[Config, RelayBroker, CallGateway]:
    if app_state.get("gateway") is None:
        install_relay(get_cached_config())
    return app_state["config"], app_state["broker"], app_state["gateway"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan. Injected relay state is reused as-is."""
    if not app_state.get("_relay_injected"):
        install_relay(get_cached_config(force_reload=True))
    config, broker, _ = _relay()
    logger.info(
        "BRP relay API started (relay {} at {})",
        "enabled" if config.relay.enabled else "disabled",
        config.relay.route,
    )
    try:
        yield
    finally:
        await broker.shutdown()
        logger.info("BRP relay API stopped")


app = FastAPI(
    title="BRP Relay",
    description="JSON-RPC over HTTP relayed to a single duplex WebSocket peer",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RelayError)
async def relay_exception_handler(request: Request, exc: RelayError):
    return JSONResponse(status_code=classify_http_status(exc), content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    code, _, _ = classify_exception(exc)
    sanitized = sanitize_error_message(str(exc))
    logger.exception(f"Unhandled exception [{code}]: {sanitized}")
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred", "code": code},
    )


@app.get("/health")
async def health():
    """Health check endpoint."""
    _, broker, _ = _relay()
    return {"ok": True, "service": "brprelay", "connected": broker.connected}


@app.get("/status")
async def status():
    """Broker state: connection, generation, pending calls."""
    config, broker, _ = _relay()
    return {"path": config.relay.route, **broker.status()}


@app.post("/")
@app.post("/jsonrpc")
async def jsonrpc(request: Request):
    """BRP-compatible JSON-RPC endpoint; ``+watch`` methods answer with SSE."""
    _, _, gateway = _relay()
    payload, error = decode_jsonrpc_body(await request.body())
    if error is not None:
        return JSONResponse(content=error)
    if CallGateway.is_watch(payload):
        return await build_watch_response(
            gateway=gateway,
            payload=payload,
            log_warning=logger.warning,
            log_exception=logger.exception,
        )
    return await build_call_response(
        gateway=gateway,
        payload=payload,
        log_warning=logger.warning,
        log_exception=logger.exception,
    )


@app.websocket("/{relay_path:path}")
async def websocket_relay(websocket: WebSocket, relay_path: str):
    """Duplex endpoint for the remote peer (default ``/brp-relay``)."""
    config, broker, _ = _relay()
    if relay_path.strip("/") != config.relay.path.strip("/"):
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="unknown path")
        return
    session = await bootstrap_relay_ws_connection(websocket=websocket, broker=broker, logger_info=logger.info)
    if session is None:
        return
    try:
        await run_relay_ws_loop(broker=broker, session=session)
    except Exception as e:
        cleanup_relay_ws_connection(broker=broker, session=session, logger_error=logger.error, exc=e)
    else:
        cleanup_relay_ws_connection(broker=broker, session=session)


def create_app() -> FastAPI:
    """Create and return the FastAPI application."""
    return app


def run_server(config: Config, *, log_level: str = "warning") -> None:
    """Run the relay server with the given configuration."""
    install_relay(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=10,
        log_level=log_level,
    )
