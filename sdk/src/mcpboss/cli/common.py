import asyncio
import functools
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import click
import httpx

from ..client import McpBossClient
from ..config import ConfigLoader
from ..exceptions import McpBossError
from ..terminal import OutputOptions, Terminal


@dataclass
class CliContext:
    """Per-invocation CLI state, stored on the click context object."""

    options: OutputOptions = field(default_factory=OutputOptions)
    org_id: Optional[str] = None
    client_factory: Optional[Callable[[], McpBossClient]] = None
    terminal: Optional[Terminal] = None

    def config_loader(self) -> ConfigLoader:
        return ConfigLoader.default(org_id=self.org_id)

    def make_client(self) -> McpBossClient:
        if self.client_factory is not None:
            return self.client_factory()
        return McpBossClient(self.config_loader().get_config())

    def get_terminal(self) -> Terminal:
        if self.terminal is None:
            self.terminal = Terminal(self.options)
        return self.terminal


def _fail(cli_ctx: CliContext, error: Exception) -> None:
    cli_ctx.get_terminal().error(error)
    click.get_current_context().exit(1)


def pass_cli(func):
    """
    Decorator that passes the CliContext as the first argument and turns
    SDK errors into an error message and exit code 1.
    """
    @functools.wraps(func)
    def decorator(*args, **kwargs):
        cli_ctx = click.get_current_context().ensure_object(CliContext)
        try:
            return func(cli_ctx, *args, **kwargs)
        except McpBossError as e:
            _fail(cli_ctx, e)

    return decorator


def pass_client(func):
    """
    Decorator for async commands that need the API.

    Passes the CliContext and an open McpBossClient as the first two
    arguments, runs the coroutine to completion and closes the client.
    """
    @functools.wraps(func)
    def decorator(*args, **kwargs):
        cli_ctx = click.get_current_context().ensure_object(CliContext)

        async def run() -> Any:
            client = cli_ctx.make_client()
            try:
                return await func(cli_ctx, client, *args, **kwargs)
            finally:
                await client.close()

        try:
            return asyncio.run(run())
        except (McpBossError, httpx.HTTPError) as e:
            _fail(cli_ctx, e)

    return decorator
