"""MCP Boss command line interface.

Usage:
    mcpboss config set-api-key -t KEY -o my-org --default
    mcpboss hosted deploy ./my-function --id fn_123
    mcpboss --format json query "What tools do I have?"
"""

from typing import Optional

import click

from .. import __version__
from ..terminal import OutputOptions
from ..utils import setup_logging
from . import agents, config, hosted
from .common import CliContext


@click.group()
@click.option(
    "-f",
    "--format",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    show_default=True,
    help="Output format",
)
@click.option("--non-interactive", is_flag=True, help="Disable prompts and progress rendering")
@click.option("--debug", envvar="MCPBOSS_DEBUG", is_flag=True, help="Enable debug logging")
@click.option("--org", "org_id", envvar="MCPBOSS_ORG_ID", default=None, help="Organization ID to use")
@click.version_option(__version__, prog_name="mcpboss")
@click.pass_context
def cli(ctx: click.Context, output_format: str, non_interactive: bool, debug: bool, org_id: Optional[str]):
    """MCP Boss CLI - query agents and deploy hosted tools."""
    setup_logging(debug)

    cli_ctx = ctx.ensure_object(CliContext)
    cli_ctx.options = OutputOptions.detect(output_format, non_interactive=True if non_interactive else None)
    cli_ctx.org_id = org_id or cli_ctx.org_id
    cli_ctx.terminal = None


cli.add_command(agents.query)
cli.add_command(agents.agents)
cli.add_command(hosted.hosted)
cli.add_command(config.management)


def main() -> None:
    cli(prog_name="mcpboss")
