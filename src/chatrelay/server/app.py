from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .. import __version__
from .config import RelayConfig
from .errors import (
    BAD_REQUEST_BODY,
    ConversationValidationError,
    UpstreamInitiationError,
)
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator, RelaySample
from .models import parse_conversation
from .relay import CLIENT_DISCONNECTED, StreamRelay
from .transform import inject_system_message
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"


def _bad_request() -> JSONResponse:
    return JSONResponse(status_code=400, content=BAD_REQUEST_BODY)


def create_app(
    cfg: RelayConfig | None = None,
    upstream: Any = None,
    *,
    metrics: MetricsAggregator | None = None,
    request_log: JsonlLogger | None = None,
) -> FastAPI:
    """Build the relay application.

    ``cfg`` defaults to the loaded runtime configuration and is validated
    here, so a missing endpoint, key or deployment fails at startup.
    ``upstream`` may be any object with an async ``open_stream(messages)``.
    """

    cfg = (cfg or RelayConfig.load()).validate()
    upstream = upstream or UpstreamClient(cfg)
    metrics = metrics or MetricsAggregator()
    request_log = request_log or JsonlLogger(cfg.log_path, cfg.max_log_bytes)

    app = FastAPI(title="chatrelay", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.cfg = cfg
    app.state.upstream = upstream
    app.state.metrics = metrics
    app.state.request_log = request_log

    def _record(outcome: str, messages: list, summary: dict | None = None) -> None:
        summary = summary or {"outcome": outcome, "chunks": 0, "duration_ms": 0.0}
        metrics.add(
            RelaySample(
                ts=time.time(),
                deployment=cfg.upstream_deployment,
                outcome=outcome,
                chunks=summary["chunks"],
                duration_ms=summary["duration_ms"],
                ttfc_ms=summary.get("ttfc_ms"),
            )
        )
        record = {"deployment": cfg.upstream_deployment, **summary}
        record["outcome"] = outcome
        if cfg.log_prompts:
            record["messages"] = messages
        request_log.log(record)

    @app.on_event("startup")
    async def _startup():  # pragma: no cover
        logger.info(
            "[app] Relaying to deployment '%s' at %s",
            cfg.upstream_deployment,
            cfg.upstream_endpoint,
        )

    @app.on_event("shutdown")
    async def _shutdown():  # pragma: no cover
        closer = getattr(upstream, "aclose", None)
        if closer is not None:
            await closer()

    @app.post("/oauth/callback")
    async def oauth_callback():
        return {"ok": True}

    @app.post("/webhook")
    async def webhook():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "ok", "uptime_seconds": metrics.summary()["uptime_seconds"]}

    @app.get("/metrics")
    async def metrics_summary():
        if not cfg.enable_metrics:
            return JSONResponse(
                status_code=404,
                content={
                    "error": {
                        "type": "metrics_disabled",
                        "code": 404,
                        "message": "Metrics are disabled (set enable_metrics)",
                    }
                },
            )
        return JSONResponse(content=metrics.summary())

    @app.post("/")
    async def relay_conversation(req: Request):
        try:
            payload = await req.json()
        except ValueError:
            logger.info("[app] Rejected request: body is not valid JSON")
            return _bad_request()
        try:
            conversation = parse_conversation(payload)
        except ConversationValidationError as exc:
            logger.info("[app] Rejected request: %s", exc)
            return _bad_request()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("[app] received input %s", json.dumps(payload, indent=4))

        messages = inject_system_message(
            [m.to_upstream() for m in conversation.messages],
            cfg.system_instruction,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "[app] Sending request to upstream %s", json.dumps(messages, indent=4)
            )

        try:
            stream = await upstream.open_stream(messages)
        except UpstreamInitiationError as exc:
            logger.error("[app] Upstream call failed: %s", exc.detail["error"])
            _record(exc.err_type, messages)
            return JSONResponse(status_code=exc.status_code, content=exc.detail)

        relay = StreamRelay(stream, is_disconnected=req.is_disconnected)

        async def streamer():
            events = relay.events()
            try:
                async for frame in events:
                    yield frame
            finally:
                await events.aclose()
                summary = relay.summary()
                _record(summary["outcome"] or CLIENT_DISCONNECTED, messages, summary)

        # media_type alone gets "; charset=utf-8" appended by Starlette
        return StreamingResponse(
            streamer(),
            media_type=EVENT_STREAM,
            headers={"content-type": EVENT_STREAM},
        )

    return app


def main():  # pragma: no cover
    from ..cli import app as cli_app

    cli_app(["serve"])


if __name__ == "__main__":  # pragma: no cover
    main()
