from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional, Protocol

from .errors import UpstreamStreamError

logger = logging.getLogger(__name__)

COMPLETED = "completed"
UPSTREAM_ERROR = "upstream_error"
CLIENT_DISCONNECTED = "client_disconnected"
RELAY_ERROR = "relay_error"


class ChunkStream(Protocol):
    def __aiter__(self): ...

    async def __anext__(self) -> Dict[str, Any]: ...

    async def aclose(self) -> None: ...


def normalize_chunk(chunk: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce ``created`` to its seconds-within-the-minute, in place.

    Existing consumers read ``created`` as the UTC seconds field of the
    chunk timestamp, so a value of 125 becomes 5.
    """

    created = chunk.get("created")
    if isinstance(created, bool) or not isinstance(created, (int, float)):
        return chunk
    if not math.isfinite(created):
        return chunk
    chunk["created"] = math.floor(created) % 60
    return chunk


def format_event(chunk: Dict[str, Any]) -> bytes:
    body = json.dumps(chunk, ensure_ascii=False, separators=(",", ":"))
    return f"data: {body}\n\n".encode("utf-8")


class StreamRelay:
    """Forward upstream chunks as server-sent-event frames, one at a time.

    The next chunk is only requested after the consumer has taken the
    previous frame, and the upstream stream is closed on every exit path.
    """

    def __init__(
        self,
        stream: ChunkStream,
        *,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self._stream = stream
        self._is_disconnected = is_disconnected
        self.chunks_sent = 0
        self.started_at = time.time()
        self.first_chunk_at: float | None = None
        self.finished_at: float | None = None
        self.outcome: str | None = None
        self.error: str | None = None

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    async def events(self) -> AsyncGenerator[bytes, None]:
        try:
            while True:
                if await self._client_gone():
                    self.outcome = CLIENT_DISCONNECTED
                    logger.info(
                        "[relay] Client disconnected after %d chunk(s); stopping upstream",
                        self.chunks_sent,
                    )
                    break
                try:
                    chunk = await self._stream.__anext__()
                except StopAsyncIteration:
                    self.outcome = COMPLETED
                    logger.info(
                        "[relay] Finished sending response (%d chunk(s))",
                        self.chunks_sent,
                    )
                    break
                except UpstreamStreamError as exc:
                    self.outcome = UPSTREAM_ERROR
                    self.error = str(exc)
                    logger.exception(
                        "[relay] Upstream stream failed after %d chunk(s)",
                        self.chunks_sent,
                    )
                    break
                except Exception as exc:
                    self.outcome = UPSTREAM_ERROR
                    self.error = f"{type(exc).__name__}: {exc}"
                    logger.exception(
                        "[relay] Unexpected error reading upstream after %d chunk(s)",
                        self.chunks_sent,
                    )
                    break

                frame = format_event(normalize_chunk(chunk))
                logger.debug("[relay] Sending chunk: %s", frame[6:-2].decode("utf-8"))
                if self.first_chunk_at is None:
                    self.first_chunk_at = time.time()
                self.chunks_sent += 1
                yield frame
        except (asyncio.CancelledError, GeneratorExit):
            self.outcome = self.outcome or CLIENT_DISCONNECTED
            logger.info(
                "[relay] Stream cancelled after %d chunk(s)", self.chunks_sent
            )
            raise
        except Exception as exc:
            self.outcome = RELAY_ERROR
            self.error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "[relay] Failed to relay chunk %d", self.chunks_sent + 1
            )
            raise
        finally:
            self.finished_at = time.time()
            await self._stream.aclose()

    def summary(self) -> Dict[str, Any]:
        end = self.finished_at or time.time()
        ttfc_ms = (
            (self.first_chunk_at - self.started_at) * 1000
            if self.first_chunk_at is not None
            else None
        )
        return {
            "outcome": self.outcome,
            "chunks": self.chunks_sent,
            "ttfc_ms": ttfc_ms,
            "duration_ms": (end - self.started_at) * 1000,
            "error": self.error,
        }
