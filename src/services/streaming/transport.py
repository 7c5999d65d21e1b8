"""Server-Sent Events framing and the ASGI response that carries it.

`SseTransport` owns the response body lifecycle: one `data: <json>` block per
event, the `[DONE]` sentinel written at most once by `close()`, and no writes
after the client has gone. `EventStreamResponse` runs a producer coroutine
against a transport while watching for client disconnects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from core.exceptions import TransportClosedError
from schemas.report_stream import DoneEvent, StreamEvent


logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Errors an ASGI server raises when writing to a connection the client closed
_WRITE_ERRORS = (OSError, ClientDisconnect)


def encode(event: StreamEvent) -> bytes:
    """Frame one event for the wire."""
    return event.to_sse().encode("utf-8")


class SseTransport:
    """Writes framed events to an ASGI `send` callable."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self._started = False
        self._closed = False
        self._disconnected = False
        self.events_sent = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def mark_disconnected(self) -> None:
        self._disconnected = True

    async def open(
        self, status_code: int = 200, raw_headers: list[tuple[bytes, bytes]] | None = None
    ) -> None:
        if self._started:
            return
        self._started = True
        await self._write(
            {
                "type": "http.response.start",
                "status": status_code,
                "headers": raw_headers or [],
            }
        )

    async def send_event(self, event: StreamEvent) -> None:
        """Write one event; `DoneEvent` is routed through `close()`.

        Raises TransportClosedError once the transport is closed or the client
        has disconnected.
        """
        if isinstance(event, DoneEvent):
            await self.close()
            return
        if self._closed or self._disconnected:
            raise TransportClosedError("transport is closed")
        await self._write(
            {"type": "http.response.body", "body": encode(event), "more_body": True}
        )
        self.events_sent += 1

    async def flush(self) -> None:
        """Let the server write pending body messages.

        ASGI servers write each message as it is sent, so this only yields to
        the event loop before the next provider pull.
        """
        if not self._closed and not self._disconnected:
            await asyncio.sleep(0)

    async def close(self) -> None:
        """Write `[DONE]` and end the body. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        if self._disconnected or not self._started:
            return
        try:
            await self._write(
                {
                    "type": "http.response.body",
                    "body": encode(DoneEvent()),
                    "more_body": False,
                }
            )
        except TransportClosedError:
            logger.debug("Client disconnected before [DONE] could be written")

    async def _write(self, message: Message) -> None:
        try:
            await self._send(message)
        except _WRITE_ERRORS as exc:
            self._disconnected = True
            raise TransportClosedError("client disconnected") from exc


Producer = Callable[[SseTransport], Awaitable[None]]


async def _wait_for_disconnect(receive: Receive) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return


class EventStreamResponse(Response):
    """Streams events written by `producer` as `text/event-stream`.

    If the client disconnects before the producer has closed the transport,
    the producer task is cancelled; after the transport is closed the producer
    is left to finish its own cleanup.
    """

    media_type = SSE_MEDIA_TYPE

    def __init__(
        self,
        producer: Producer,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        background: BackgroundTask | None = None,
    ) -> None:
        self.producer = producer
        self.status_code = status_code
        self.background = background
        self.init_headers(
            {"Content-Type": SSE_MEDIA_TYPE, **SSE_HEADERS, **(headers or {})}
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        transport = SseTransport(send)
        try:
            await transport.open(self.status_code, self.raw_headers)
        except TransportClosedError:
            return

        produce = asyncio.create_task(self.producer(transport))
        watch = asyncio.create_task(_wait_for_disconnect(receive))
        try:
            await asyncio.wait({produce, watch}, return_when=asyncio.FIRST_COMPLETED)
            if not produce.done() and not transport.closed:
                logger.info("Client disconnected; cancelling stream producer")
                transport.mark_disconnected()
                produce.cancel()
            await asyncio.wait({produce})
        finally:
            watch.cancel()
            if not produce.done():
                produce.cancel()

        error: BaseException | None = None
        if not produce.cancelled():
            error = produce.exception()
        # Producer failed before closing; still end the body
        await transport.close()
        if error is not None:
            raise error
        if self.background is not None:
            await self.background()
