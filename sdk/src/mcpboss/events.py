"""Server-sent event client for deployment log streams.

Parses the `text/event-stream` body of a long-lived GET request into
`StreamEvent` records and exposes them as an async iterator:

    async with EventStreamClient(url, auth=auth) as stream:
        async for event in stream.events():
            ...

The client does not reconnect on its own; connection failures surface as
`EventStreamError` and the caller decides what to do.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

import httpx

from .exceptions import EventStreamError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
# Deployment logs can be quiet for a long time between container transitions
DEFAULT_READ_TIMEOUT = 300.0


@dataclass
class StreamEvent:
    """A single dispatched server-sent event."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """Incremental decoder for event-stream lines."""

    def __init__(self):
        self._event = ""
        self._data: List[str] = []
        self._last_event_id: Optional[str] = None

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    def decode(self, line: str) -> Optional[StreamEvent]:
        """Feed one line (without its terminator).

        Returns:
            The dispatched event when `line` is the blank line ending one
        """
        if not line:
            if not self._data:
                self._event = ""
                return None
            event = StreamEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_event_id,
            )
            self._event = ""
            self._data = []
            return event

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_event_id = value
        # "retry" and unknown fields are ignored

        return None


class EventStreamClient:
    """One server-sent event connection."""

    def __init__(
        self,
        url: str,
        auth: Optional[httpx.Auth] = None,
        *,
        params: Optional[Dict[str, str]] = None,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._auth = auth
        self._params = params
        self._timeout = httpx.Timeout(DEFAULT_CONNECT_TIMEOUT, read=read_timeout)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Connect and validate the response headers."""
        if self._closed:
            raise EventStreamError("Event stream is already closed")
        if self._response is not None:
            return

        self._client = httpx.AsyncClient(
            auth=self._auth,
            timeout=self._timeout,
            transport=self._transport,
        )
        request = self._client.build_request(
            "GET",
            self.url,
            params=self._params,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        )

        logger.debug(f"Opening event stream {request.url}")
        try:
            self._response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise EventStreamError(f"Failed to connect to {self.url}: {e}") from e

        if self._response.status_code != 200:
            body = (await self._response.aread()).decode("utf-8", errors="replace")
            raise EventStreamError(
                f"Event stream returned HTTP {self._response.status_code}: {body[:300]}"
            )

        content_type = self._response.headers.get("content-type", "")
        if "text/event-stream" not in content_type:
            raise EventStreamError(f"Unexpected content type for event stream: {content_type!r}")

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in the order the server sent them.

        Raises:
            EventStreamError: the connection failed or broke mid-stream
        """
        await self.open()
        decoder = SSEDecoder()
        try:
            async for line in self._response.aiter_lines():
                event = decoder.decode(line.rstrip("\r\n"))
                if event is not None:
                    yield event
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self._closed:
                return
            raise EventStreamError(f"Event stream interrupted: {e}") from e

        logger.debug(f"Event stream {self.url} ended")

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self._response is not None:
            await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()
        logger.debug(f"Closed event stream {self.url}")

    async def __aenter__(self) -> "EventStreamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
