from __future__ import annotations

"""Server-sent-events relay for streamed chat completions.

Lifecycle::

    OPENING -> STREAMING -> COMPLETING -> CLOSED
         \\________\\___________\\______-> ERRORED

``stream`` is the response body. It writes an SSE comment first so headers
reach the client at once, then waits for the first token inside ``open``;
from then on every failure is reported as an ``error`` event. Tokens are
forwarded one frame each, in provider order, and buffered in memory. The
assistant message is written once, at completion, and never on failure.
"""

from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
import json
import logging
import os
import re

from starlette.concurrency import run_in_threadpool

from ..domain.models import Settings
from ..infrastructure.events import MESSAGE_CREATED, publish_event
from ..infrastructure.storage import Storage
from ..observability.metrics import STREAM_OUTCOMES, STREAMS_ACTIVE
from .chat_responder import finalize_reply
from .llm import response_text


logger = logging.getLogger("projectbot.services.streaming")
LOG = logging.getLogger("projectbot.llm")

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
STREAM_ERROR_MESSAGE = "Error generating response"
# comment line; EventSource clients ignore it
OPEN_COMMENT = ": open\n\n"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class RelayState(str, Enum):
    OPENING = "opening"
    STREAMING = "streaming"
    COMPLETING = "completing"
    CLOSED = "closed"
    ERRORED = "errored"


class RelayStateError(RuntimeError):
    pass


@dataclass
class StreamConfig:
    first_token_timeout: float = 30.0
    idle_timeout: float = 60.0
    total_timeout: float = 300.0

    @staticmethod
    def from_env() -> "StreamConfig":
        return StreamConfig(
            first_token_timeout=float(os.getenv("PROJECTBOT_STREAM_FIRST_TOKEN_TIMEOUT_SEC", "30")),
            idle_timeout=float(os.getenv("PROJECTBOT_STREAM_IDLE_TIMEOUT_SEC", "60")),
            total_timeout=float(os.getenv("PROJECTBOT_STREAM_TOTAL_TIMEOUT_SEC", "300")),
        )


def sse_data(text: str) -> str:
    # Embedded line breaks become extra data lines; EventSource joins them back with "\n".
    return "".join(f"data: {line}\n" for line in _LINE_BREAK.split(text)) + "\n"


def sse_event(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def error_frame(message: str = STREAM_ERROR_MESSAGE) -> str:
    return sse_event("error", {"error": message})


async def token_stream(llm: Any, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
    """Adapt a LangChain chat model's ``astream`` into non-empty text tokens."""
    async with aclosing(llm.astream(messages)) as upstream:
        async for chunk in upstream:
            text = response_text(chunk)
            if text:
                yield text


class StreamRelay:
    def __init__(
        self,
        storage: Storage,
        chatbot_id: int,
        upstream: AsyncIterator[str],
        settings: Optional[Settings] = None,
        config: Optional[StreamConfig] = None,
    ) -> None:
        self.storage = storage
        self.chatbot_id = chatbot_id
        self.settings = settings
        self.config = config or StreamConfig.from_env()
        self.state = RelayState.OPENING
        self.message_id: Optional[int] = None
        self._upstream = upstream
        self._first: Optional[str] = None
        self._exhausted = False
        self._buffer: List[str] = []
        self._upstream_closed = False
        self._deadline: Optional[float] = None

    def _transition(self, target: RelayState) -> None:
        if self.state in (RelayState.CLOSED, RelayState.ERRORED):
            raise RelayStateError(f"relay already {self.state.value}")
        self.state = target

    async def stream(self) -> AsyncIterator[str]:
        """Whole SSE body: flush comment, first-token wait, then ``frames``."""
        yield OPEN_COMMENT
        try:
            await self.open()
        except asyncio.TimeoutError:
            LOG.warning("llm_stream_first_token_timeout", extra={"chatbot_id": self.chatbot_id})
            STREAM_OUTCOMES.labels(outcome="timeout").inc()
            yield error_frame()
            return
        except Exception as exc:
            LOG.warning("llm_stream_open_failed", extra={"chatbot_id": self.chatbot_id, "err": str(exc)})
            STREAM_OUTCOMES.labels(outcome="errored").inc()
            yield error_frame()
            return
        async with aclosing(self.frames()) as frames:
            async for frame in frames:
                yield frame

    async def open(self) -> None:
        """Wait for the first token under the first-token timeout."""
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.config.total_timeout
        try:
            self._first = await asyncio.wait_for(self._upstream.__anext__(), self.config.first_token_timeout)
        except StopAsyncIteration:
            self._exhausted = True
        except BaseException:
            self._transition(RelayState.ERRORED)
            await self._close_upstream()
            raise
        LOG.info("llm_stream_opened", extra={"chatbot_id": self.chatbot_id})

    async def _next_token(self) -> str:
        loop = asyncio.get_running_loop()
        remaining = (self._deadline or loop.time()) - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError()
        return await asyncio.wait_for(self._upstream.__anext__(), min(self.config.idle_timeout, remaining))

    async def _close_upstream(self) -> None:
        if self._upstream_closed:
            return
        self._upstream_closed = True
        aclose = getattr(self._upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.debug("upstream close raised", exc_info=True)

    async def frames(self) -> AsyncIterator[str]:
        if self.state != RelayState.OPENING:
            raise RelayStateError("relay must be opened exactly once")
        self._transition(RelayState.STREAMING)
        STREAMS_ACTIVE.inc()
        outcome = "errored"
        try:
            if self._first is not None:
                self._buffer.append(self._first)
                yield sse_data(self._first)
            while not self._exhausted:
                try:
                    token = await self._next_token()
                except StopAsyncIteration:
                    break
                self._buffer.append(token)
                yield sse_data(token)

            self._transition(RelayState.COMPLETING)
            await self._close_upstream()
            reply = finalize_reply("".join(self._buffer), self.settings)
            message = await run_in_threadpool(
                self.storage.create_message,
                self.chatbot_id,
                content=reply.content,
                is_user_message=False,
                citation=reply.citation,
            )
            self.message_id = message.id
            self._transition(RelayState.CLOSED)
            outcome = "completed"
            event = {"chatbot_id": self.chatbot_id, "message_id": message.id}
            await run_in_threadpool(publish_event, MESSAGE_CREATED, event)
            yield sse_event("done", {"message_id": message.id, "citation": reply.citation})
        except (asyncio.CancelledError, GeneratorExit):
            outcome = "cancelled"
            self.state = RelayState.ERRORED
            logger.info("stream_cancelled chatbot=%s tokens=%s", self.chatbot_id, len(self._buffer))
            raise
        except asyncio.TimeoutError:
            outcome = "timeout"
            self.state = RelayState.ERRORED
            LOG.warning("llm_stream_timeout", extra={"chatbot_id": self.chatbot_id, "tokens": len(self._buffer)})
            yield error_frame()
        except Exception as exc:
            self.state = RelayState.ERRORED
            LOG.warning("llm_stream_failed", extra={"chatbot_id": self.chatbot_id, "err": str(exc)})
            logger.exception("Streaming relay failed for chatbot %s", self.chatbot_id)
            yield error_frame()
        finally:
            await self._close_upstream()
            STREAMS_ACTIVE.dec()
            STREAM_OUTCOMES.labels(outcome=outcome).inc()
