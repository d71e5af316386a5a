import os
from typing import Dict, List, Optional, Tuple

import click

from ..client import McpBossClient
from ..exceptions import McpBossError
from ..hosted import check_index_js, cleanup_zip_file, create_zip_from_directory, resolve_pod_name
from ..monitor import CrashLogFetcher, DeploymentMonitor, Outcome
from ..terminal import DeploymentProgressView, TableColumn, render_crash_logs
from .common import CliContext, pass_client

FUNCTION_COLUMNS = [
    TableColumn("id", "ID"),
    TableColumn("name", "Name"),
    TableColumn("createdAt", "Created"),
    TableColumn("updatedAt", "Updated"),
    TableColumn("isEnabled", "Enabled", justify="center"),
]


def _validate_function_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise click.BadParameter("Function name is required")
    if len(name) < 3:
        raise click.BadParameter("Function name must be at least 3 characters long")
    return name


def _parse_env(ctx, param, values: Tuple[str, ...]) -> List[Tuple[str, str]]:
    pairs = []
    for value in values:
        key, sep, val = value.partition("=")
        if not key or not sep:
            raise click.BadParameter("Environment variables must be in format KEY=VALUE")
        pairs.append((key, val))
    return pairs


async def watch_deployment(cli_ctx: CliContext, client: McpBossClient, function_id: str, follow: bool) -> Outcome:
    """Monitor a rollout, drawing progress when the terminal is interactive."""
    with DeploymentProgressView(cli_ctx.get_terminal()) as view:
        monitor = DeploymentMonitor(client, on_update=view.update)
        return await monitor.monitor(function_id, follow=follow)


async def show_crash_logs(cli_ctx: CliContext, client: McpBossClient, function_id: str, outcome: Outcome) -> None:
    terminal = cli_ctx.get_terminal()
    pod_name = await resolve_pod_name(client, function_id, outcome)
    if not pod_name:
        terminal.warn("No pod found for this deployment, skipping crash logs")
        return

    terminal.progress("🔍 Fetching crash logs...")
    logs = await CrashLogFetcher(client).fetch(pod_name)
    if logs is None:
        terminal.warn("No crash logs available")
        return

    outcome.state.crash_logs = logs
    if terminal.is_json:
        terminal.output({"podName": pod_name, "stdout": logs.stdout, "stderr": logs.stderr})
    else:
        terminal.console.print(render_crash_logs(logs))


@click.group(
    name="hosted",
    help="Manage hosted tools.",
)
def hosted():
    pass


@hosted.command(
    name="deploy",
    help="Deploy a hosted tool (new or existing).",
)
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("-i", "--id", "function_id", help="Hosted function ID (if not provided, will create new)")
@click.option("--no-progress", is_flag=True, help="Skip deployment progress monitoring")
@click.option("--no-logs", is_flag=True, help="Skip fetching crash logs on deployment failure")
@click.option("--follow", is_flag=True, help="Follow the rollout until it is ready, crashes or the server reports it is done")
@pass_client
async def deploy(
    cli_ctx: CliContext,
    client: McpBossClient,
    path: str,
    function_id: Optional[str],
    no_progress: bool,
    no_logs: bool,
    follow: bool,
):
    terminal = cli_ctx.get_terminal()
    ctx = click.get_current_context()

    if not function_id:
        if not click.confirm(
            "No hosted function ID provided. Would you like to create a new hosted function?",
            default=True,
        ):
            terminal.info("Deployment cancelled.")
            return
        name = click.prompt("Enter the name for the new hosted function", value_proc=_validate_function_name)
        terminal.info(f"Creating new hosted tool: {name}")
        function = await client.create_hosted_function(name)
        function_id = function["id"]
        terminal.info(f"Created hosted tool with ID: {function_id}")

    index_check = check_index_js(path)
    if not index_check.exists:
        raise McpBossError(
            f"index.js file not found in directory: {os.path.abspath(path)}. "
            "Make sure the directory contains an index.js file."
        )
    if not index_check.has_schema:
        terminal.warn(
            "index.js does not contain a schema export. Make sure your file exports a schema "
            "(ES modules: export const schema = { ... }, CommonJS: module.exports.schema = { ... }). "
            "Proceeding anyway..."
        )

    zip_path = ""
    try:
        terminal.info("Creating deployment package...")
        zip_path = create_zip_from_directory(path)

        terminal.info("Deploying...")
        await client.upload_hosted_function(function_id, zip_path)
        terminal.info("✅ ZIP file uploaded successfully")
        await client.start_hosted_function(function_id)
        terminal.info("✅ Hosted function started successfully")
    finally:
        if zip_path:
            cleanup_zip_file(zip_path)

    if no_progress:
        terminal.output({"deployed": True, "stabilized": "unknown"})
        return

    outcome = await watch_deployment(cli_ctx, client, function_id, follow)
    terminal.output({"deployed": outcome.deployed, "stabilized": outcome.stabilized})

    if not outcome.stabilized:
        if not no_logs:
            await show_crash_logs(cli_ctx, client, function_id, outcome)
        ctx.exit(1)

    tools = await client.list_hosted_function_tools(function_id, pod_name=outcome.pod_name)
    terminal.output(tools)


@hosted.command(
    name="create",
    help="Create a new hosted tool (without deploying).",
)
@click.option("-n", "--name", help="Function name")
@click.option("-d", "--description", help="Function description")
@pass_client
async def create(cli_ctx: CliContext, client: McpBossClient, name: Optional[str], description: Optional[str]):
    if not name:
        name = click.prompt("Enter the name for the new hosted tool", value_proc=_validate_function_name)

    function = await client.create_hosted_function(name, description)
    cli_ctx.get_terminal().success("Hosted function created successfully!", {
        "functionId": function["id"],
        "functionName": function.get("name", name),
        "nextSteps": [
            "Prepare your function code with an index.js file",
            "Make sure your index.js exports a schema (export const schema or module.exports.schema)",
            f"Deploy your function: mcpboss hosted deploy --id {function['id']} [path]",
            "Or list all functions: mcpboss hosted ls",
        ],
    })


@hosted.command(
    name="ls",
    help="List hosted tools.",
)
@pass_client
async def list_functions(cli_ctx: CliContext, client: McpBossClient):
    functions = await client.list_hosted_functions()
    cli_ctx.get_terminal().output({"functions": functions}, columns=FUNCTION_COLUMNS)


@hosted.command(
    name="get",
    help="Get hosted tool details and deployment status.",
)
@click.argument("function_id")
@pass_client
async def get(cli_ctx: CliContext, client: McpBossClient, function_id: str):
    function = await client.get_hosted_function(function_id)
    status = await client.get_deployment_status(function_id)
    cli_ctx.get_terminal().output({**function, **status})


@hosted.command(
    name="show",
    help="Show the deployment progress of a hosted tool.",
)
@click.argument("function_id")
@click.option("--follow", is_flag=True, help="Follow the rollout until it is ready, crashes or the server reports it is done")
@pass_client
async def show(cli_ctx: CliContext, client: McpBossClient, function_id: str, follow: bool):
    terminal = cli_ctx.get_terminal()
    outcome = await watch_deployment(cli_ctx, client, function_id, follow)
    terminal.output(outcome.to_dict())

    if outcome.stabilized:
        tools = await client.list_hosted_function_tools(function_id, pod_name=outcome.pod_name)
        terminal.output(tools)
        return

    await show_crash_logs(cli_ctx, client, function_id, outcome)
    click.get_current_context().exit(1)


@hosted.command(
    name="update",
    help="Update hosted tool metadata (name, description, enabled flag, environment variables).",
    epilog=(
        "Examples:\n\n"
        '  mcpboss hosted update func123 --name "My Updated Function"\n\n'
        "  mcpboss hosted update func123 --env API_KEY=secret123 --env DEBUG=true"
    ),
)
@click.argument("function_id")
@click.option("-n", "--name", help="Update function name")
@click.option("-d", "--description", help="Update function description")
@click.option("-E", "--is-enabled", type=click.BOOL, help="Update function enabled status (true or false)")
@click.option("-e", "--env", multiple=True, callback=_parse_env, help="Set environment variable KEY=VALUE (repeatable)")
@pass_client
async def update(
    cli_ctx: CliContext,
    client: McpBossClient,
    function_id: str,
    name: Optional[str],
    description: Optional[str],
    is_enabled: Optional[bool],
    env: List[Tuple[str, str]],
):
    if not name and not description and not env and is_enabled is None:
        raise McpBossError("No updates provided. Use --name, --description, --is-enabled or --env options.")

    current = await client.get_hosted_function(function_id)

    body: Dict[str, object] = {}
    if name:
        body["name"] = name
    if description:
        body["description"] = description
    if is_enabled is not None:
        body["isEnabled"] = is_enabled
    if env:
        merged = dict(current.get("env") or [])
        merged.update(env)
        body["env"] = [[key, value] for key, value in merged.items()]

    await client.update_hosted_function(function_id, body)
    cli_ctx.get_terminal().output(await client.get_hosted_function(function_id))
