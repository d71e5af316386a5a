from typing import Optional

import click

from ..client import McpBossClient, QueryOptions
from ..terminal import TableColumn
from .common import CliContext, pass_client

AGENT_COLUMNS = [
    TableColumn("id", "ID"),
    TableColumn("name", "Name"),
    TableColumn("modelId", "Model"),
    TableColumn("isEnabled", "Enabled", justify="center"),
    TableColumn("description", "Description"),
]


def _split(value: Optional[str]) -> Optional[list]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


@click.command(
    name="query",
    help="Send a query to an MCP Boss agent.",
)
@click.argument("prompt")
@click.option("-a", "--agent-id", help="Specific agent ID to use")
@click.option("-m", "--model-id", help="Model ID to use")
@click.option("-k", "--api-key-id", help="LLM API key ID to use")
@click.option("-s", "--servers", help="Comma-separated list of MCP servers to limit to")
@click.option("-t", "--tools", help="Comma-separated list of tools to limit to")
@click.option("--full", is_flag=True, help="Output the full response data instead of the text answer")
@click.option("--no-auto-create", is_flag=True, help="Disable automatic agent creation")
@click.option("--timeout", type=int, help="Timeout in milliseconds")
@pass_client
async def query(
    cli_ctx: CliContext,
    client: McpBossClient,
    prompt: str,
    agent_id: Optional[str],
    model_id: Optional[str],
    api_key_id: Optional[str],
    servers: Optional[str],
    tools: Optional[str],
    full: bool,
    no_auto_create: bool,
    timeout: Optional[int],
):
    terminal = cli_ctx.get_terminal()
    options = QueryOptions(
        agent_id=agent_id,
        model_id=model_id,
        llm_api_key_id=api_key_id,
        limit_mcp_servers=_split(servers),
        limit_tools=_split(tools),
        dont_auto_create_agent=no_auto_create,
        timeout=timeout / 1000 if timeout else None,
    )

    terminal.progress("Sending query to MCP Boss...")
    result = await client.query(prompt, options)

    if not result.ok:
        terminal.error(result.text)
        click.get_current_context().exit(1)
    terminal.output(result.full_output if full else result.text)


@click.group(
    name="agents",
    help="Manage agents.",
)
def agents():
    pass


@agents.command(
    name="ls",
    help="List available agents.",
)
@pass_client
async def list_agents(cli_ctx: CliContext, client: McpBossClient):
    rows = [
        {
            "id": agent.get("id"),
            "name": agent.get("name"),
            "modelId": agent.get("modelId"),
            "isEnabled": bool(agent.get("isEnabled")),
            "description": agent.get("description") or "",
        }
        for agent in await client.list_agents()
    ]
    cli_ctx.get_terminal().output({"agents": rows}, columns=AGENT_COLUMNS)
