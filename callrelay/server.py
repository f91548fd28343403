"""HTTP/WebSocket server for callrelay.

A FastAPI application exposing:
    GET  /                      liveness message
    GET  /health                active call count
    POST /outbound-call         place a call through Twilio
    ALL  /outbound-call-twiml   TwiML pointing Twilio at the media stream
    WS   /outbound-media-stream Twilio Media Streams (the telephony leg)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import ValidationError

from callrelay.bridge import CallRelay
from callrelay.calls import (
    STREAM_PARAMETERS,
    TWIML_PATH,
    CallPlacementError,
    OutboundCallRequest,
    build_stream_twiml,
)
from callrelay.config import RelayConfig, load_config
from callrelay.transports.websocket import FastAPIWebSocketTransport


def create_app(
    config: RelayConfig | dict | str | Path | None = None,
    relay: CallRelay | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Relay configuration; ignored when ``relay`` is given.
        relay: A prebuilt relay (lets tests inject collaborators).
    """
    relay = relay or CallRelay(load_config(config))
    relay_config = relay.config
    media_path = relay_config.server.media_path

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await relay.close()

    app = FastAPI(
        title="callrelay",
        description="Twilio to ElevenLabs conversational AI media relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.relay = relay

    @app.get("/")
    async def root():
        return {"message": "Server is running"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_calls": relay.sessions.active_count}

    @app.post("/outbound-call")
    async def outbound_call(request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict) or not body.get("phone_number"):
            return JSONResponse({"error": "Phone number is required"}, status_code=400)

        try:
            call_request = OutboundCallRequest(**body)
        except ValidationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        host = request.headers.get("host", "")
        try:
            call_sid = await relay.calls.place(call_request, host)
        except CallPlacementError:
            return JSONResponse(
                {"success": False, "error": "Failed to initiate call"},
                status_code=500,
            )

        return {"success": True, "message": "Call initiated", "callSid": call_sid}

    @app.api_route(TWIML_PATH, methods=["GET", "POST"])
    async def outbound_call_twiml(request: Request):
        params = {key: request.query_params.get(key, "") for key in STREAM_PARAMETERS}
        host = request.headers.get("host", "")
        twiml = build_stream_twiml(host, params, media_path)
        return Response(content=twiml, media_type="text/xml")

    @app.websocket(media_path)
    async def media_stream(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"[Server] Twilio WebSocket connected: {websocket.client}")
        transport = FastAPIWebSocketTransport(websocket)
        await relay.handle_telephony_connection(transport)

    return app


def run_server(
    config: RelayConfig | dict | str | Path | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the relay server with uvicorn.

    Args:
        config: Relay configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    import uvicorn

    relay_config = load_config(config)
    app = create_app(relay_config)

    logger.info(f"[Server] Listening on port {port or relay_config.server.port}")
    uvicorn.run(
        app,
        host=host or relay_config.server.host,
        port=port or relay_config.server.port,
        log_level=_uvicorn_level(relay_config.logging.level),
    )


def _uvicorn_level(level: str) -> str:
    level = level.lower()
    if level in ("trace", "debug", "info", "warning", "error", "critical"):
        return level
    return "info"
