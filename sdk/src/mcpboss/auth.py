"""Request authentication for the MCP Boss API."""

from typing import Callable, Generator

import httpx


class BearerTokenAuth(httpx.Auth):
    """Adds `Authorization: Bearer <token>` to every outgoing request.

    The token supplier runs once per request, including the initial
    connection of a log stream, so refreshed credentials apply immediately.
    """

    def __init__(self, token: Callable[[], str]):
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token()}"
        yield request
