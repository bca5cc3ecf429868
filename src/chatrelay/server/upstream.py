from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import RelayConfig
from .errors import (
    UpstreamAuthFailed,
    UpstreamRejected,
    UpstreamStreamError,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

DONE = object()
_HINT_LIMIT = 200


def parse_event_line(line: str) -> Any:
    """Decode one server-sent-event line from the completion stream.

    Returns ``None`` for lines that carry no chunk (blank lines, comments,
    ``event:``/``id:`` fields), :data:`DONE` for the end marker, or the
    decoded chunk dict.
    """

    if not line or not line.startswith("data:"):
        return None
    data = line[5:].strip()
    if not data:
        return None
    if data == "[DONE]":
        return DONE
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as exc:
        raise UpstreamStreamError(f"Undecodable upstream chunk: {data[:_HINT_LIMIT]!r}") from exc
    if not isinstance(obj, dict):
        raise UpstreamStreamError(f"Unexpected upstream chunk type: {type(obj).__name__}")
    if "error" in obj and "choices" not in obj:
        raise UpstreamStreamError(f"Upstream reported an error: {obj['error']!r}")
    return obj


class UpstreamStream:
    """Async iterator over the chunks of one streaming completion.

    Owns the underlying httpx response and closes it when the sequence ends,
    fails, or :meth:`aclose` is called. Not restartable.
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self._lines: AsyncIterator[str] = response.aiter_lines()
        self._closed = False
        self.done = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "UpstreamStream":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        while not (self._closed or self.done):
            try:
                line = await self._lines.__anext__()
            except StopAsyncIteration:
                # Upstream closed without [DONE]; treat as a normal end
                break
            except httpx.HTTPError as exc:
                await self.aclose()
                raise UpstreamStreamError(
                    f"Upstream stream interrupted: {type(exc).__name__}: {exc}"
                ) from exc
            try:
                parsed = parse_event_line(line)
            except UpstreamStreamError:
                await self.aclose()
                raise
            if parsed is None:
                continue
            if parsed is DONE:
                break
            return parsed
        self.done = True
        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        except httpx.HTTPError as exc:
            logger.warning("[upstream] Error while closing stream: %s", exc)

    async def __aenter__(self) -> "UpstreamStream":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False


class UpstreamClient:
    """Streaming chat-completion client for an Azure OpenAI deployment.

    One instance is shared by all requests; each :meth:`open_stream` call is
    an independent HTTP request.
    """

    def __init__(self, cfg: RelayConfig, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        connect_s = cfg.connect_timeout_ms / 1000
        idle_s = cfg.stream_idle_timeout_ms / 1000 if cfg.stream_idle_timeout_ms else None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect_s, read=idle_s)
        )

    @property
    def deployment(self) -> str:
        return self.cfg.upstream_deployment

    @property
    def url(self) -> str:
        base = self.cfg.upstream_endpoint.rstrip("/")
        return f"{base}/openai/deployments/{self.deployment}/chat/completions"

    def build_request(self, messages: List[Dict[str, Any]]) -> httpx.Request:
        return self.client.build_request(
            "POST",
            self.url,
            params={"api-version": self.cfg.upstream_api_version},
            headers={"api-key": self.cfg.upstream_api_key, "accept": "text/event-stream"},
            json={"messages": messages, "stream": True},
        )

    async def open_stream(self, messages: List[Dict[str, Any]]) -> UpstreamStream:
        request = self.build_request(messages)
        try:
            resp = await self.client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(
                self.deployment, hint=f"{type(exc).__name__}: {exc}"[:_HINT_LIMIT]
            ) from exc

        if resp.status_code >= 400:
            try:
                body = await resp.aread()
                hint = body.decode(errors="ignore")[:_HINT_LIMIT] or None
            except httpx.HTTPError:
                hint = None
            finally:
                await resp.aclose()
            if resp.status_code in (401, 403):
                raise UpstreamAuthFailed(self.deployment, resp.status_code, hint)
            raise UpstreamRejected(self.deployment, resp.status_code, hint)

        logger.debug("[upstream] Stream opened for deployment '%s'", self.deployment)
        return UpstreamStream(resp)

    async def aclose(self) -> None:
        await self.client.aclose()
