"""
Streaming fetch over text/event-stream.

SSETransport speaks HTTP and yields raw events; StreamSession turns them
into decoded (id, payload) records, either as an async iterator or by
driving record/end/error callbacks from a task it owns.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple

import aiohttp

from .config import STREAM_PATH

log = logging.getLogger("StreamExplorer.StreamSession")

# Errors that mean the connection itself failed, as opposed to a bad event.
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class StreamEvent:
    id: str
    data: str
    event: str = 'message'


class SSEDecoder:
    """Incremental line-based decoder for the text/event-stream format."""

    def __init__(self):
        self.last_event_id = ''
        self._data: List[str] = []
        self._event = ''

    def feed_line(self, line: str) -> Optional[StreamEvent]:
        """Consume one line; returns an event when a blank line completes one."""
        line = line.rstrip('\r\n')
        if not line:
            return self._dispatch()
        if line.startswith(':'):
            return None

        name, _, value = line.partition(':')
        if value.startswith(' '):
            value = value[1:]
        if name == 'data':
            self._data.append(value)
        elif name == 'id':
            if '\0' not in value:
                self.last_event_id = value
        elif name == 'event':
            self._event = value
        # 'retry' and unknown fields are ignored, reconnect timing is ours.
        return None

    def _dispatch(self) -> Optional[StreamEvent]:
        if not self._data:
            self._event = ''
            return None
        event = StreamEvent(self.last_event_id, '\n'.join(self._data), self._event or 'message')
        self._data = []
        self._event = ''
        return event


class Transport(Protocol):
    def events(self, params: Dict[str, str]) -> AsyncIterator[StreamEvent]: ...


class SSETransport:
    """HTTP transport opening ``GET <base_url>/stream`` with aiohttp."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip('/')

    async def events(self, params: Dict[str, str]) -> AsyncIterator[StreamEvent]:
        url = f"{self.base_url}{STREAM_PATH}"
        decoder = SSEDecoder()
        log.debug(f"Opening stream {url} {params}")
        async with self.session.get(url, params=params,
                                    headers={'Accept': 'text/event-stream'}) as resp:
            resp.raise_for_status()
            async for raw in resp.content:
                event = decoder.feed_line(raw.decode('utf-8', errors='replace'))
                if event is not None:
                    yield event
        # An unterminated trailing event is discarded, as EventSource does.


def decode_payload(event: StreamEvent) -> Optional[Dict[str, Any]]:
    """Parse an event body; malformed or non-object bodies are dropped."""
    try:
        payload = json.loads(event.data)
    except json.JSONDecodeError as e:
        log.warning(f"Dropping event {event.id}: malformed JSON ({e})")
        return None
    if not isinstance(payload, dict):
        log.warning(f"Dropping event {event.id}: expected an object, got {type(payload).__name__}")
        return None
    return payload


class StreamSession:
    """
    One streaming fetch.

    ``purpose`` is informational ('bounded' or 'live'); the caller decides the
    range. Once the stream ends, errors or is closed, no further callback
    fires.
    """

    def __init__(self, transport: Transport, purpose: str = 'bounded'):
        self.transport = transport
        self.purpose = purpose
        self.params: Optional[Dict[str, str]] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def records(self, params: Dict[str, str]) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """Yield decoded (id, payload) pairs in arrival order."""
        self.params = params
        async with contextlib.aclosing(self.transport.events(params)) as events:
            async for event in events:
                if self._closed:
                    break
                payload = decode_payload(event)
                if payload is None:
                    continue
                yield event.id, payload

    def open(self, params: Dict[str, str],
             on_record: Callable[[str, Dict[str, Any]], None],
             on_end: Callable[[], None],
             on_error: Callable[[BaseException], None]) -> asyncio.Task:
        if self._task is not None or self._closed:
            raise RuntimeError(f"{self.purpose} stream session cannot be opened twice")
        self._task = asyncio.create_task(self._pump(params, on_record, on_end, on_error))
        return self._task

    async def _pump(self, params, on_record, on_end, on_error):
        try:
            async with contextlib.aclosing(self.records(params)) as records:
                async for record_id, payload in records:
                    if self._closed:
                        return
                    on_record(record_id, payload)
        except TRANSPORT_ERRORS as e:
            if self._closed:
                return
            self._closed = True
            log.warning(f"{self.purpose} stream {params} failed: {type(e).__name__}: {e}")
            on_error(e)
            return

        if not self._closed:
            self._closed = True
            log.debug(f"{self.purpose} stream {params} ended")
            on_end()

    async def wait(self):
        """Wait until the session has ended, failed or been closed."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def close(self):
        """Terminate the stream. Idempotent; safe to call from a callback."""
        self._closed = True
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.debug(f"{self.purpose} stream {self.params} closed")
