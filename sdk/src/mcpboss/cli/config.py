from typing import Optional

import click

from .. import config as cfg
from ..terminal import TableColumn
from .common import CliContext, pass_cli

ORG_COLUMNS = [
    TableColumn("orgId", "Organization"),
    TableColumn("baseUrl", "Base URL"),
    TableColumn("default", "Default", justify="center"),
    TableColumn("credential", "Credential"),
]


def _credential_kind(org: cfg.OrganizationConfig) -> str:
    if org.api_key:
        return "api key"
    if org.tokens and org.tokens.access_token:
        return "access token"
    if org.tokens and org.tokens.refresh_token:
        return "refresh token"
    return "none"


@click.group(
    name="config",
    help="Manage MCP Boss configuration.",
)
def management():
    pass


@management.command(
    name="show",
    help="Show the resolved configuration.",
)
@pass_cli
def show(cli_ctx: CliContext):
    resolved = cli_ctx.config_loader().get_config()
    cli_ctx.get_terminal().output({
        **resolved.to_dict(),
        "configFile": str(cfg.get_config_file_path()),
        "defaultOrgId": cfg.get_default_organization(),
    })


@management.command(
    name="token",
    help="Print the bearer token the CLI would send.",
)
@pass_cli
def token(cli_ctx: CliContext):
    resolved = cli_ctx.config_loader().get_config()
    terminal = cli_ctx.get_terminal()
    if terminal.is_json:
        terminal.output({"token": resolved.token()})
    else:
        terminal.print(resolved.token())


@management.command(
    name="set-api-key",
    help="Store an API key for an organization.",
)
@click.option("-t", "--key", required=True, help="API key")
@click.option("-o", "--org-id", required=True, help="Organization ID")
@click.option("--base-url", help="Base URL (defaults to https://<org-id>.mcp-boss.com)")
@click.option("--default", "make_default", is_flag=True, help="Make this the default organization")
@pass_cli
def set_api_key(cli_ctx: CliContext, key: str, org_id: str, base_url: Optional[str], make_default: bool):
    cfg.set_organization_config(org_id, base_url=base_url, api_key=key)
    if make_default:
        cfg.set_default_organization(org_id)

    cli_ctx.get_terminal().success(f"API key saved for {org_id}", {
        "orgId": org_id,
        "default": cfg.get_default_organization() == org_id,
    })


@management.command(
    name="ls",
    help="List configured organizations.",
)
@pass_cli
def list_orgs(cli_ctx: CliContext):
    settings = cfg.read_settings()
    rows = [
        {
            "orgId": org_id,
            "baseUrl": org.base_url,
            "default": org_id == settings.default_org_id,
            "credential": _credential_kind(org),
        }
        for org_id, org in settings.orgs.items()
    ]
    cli_ctx.get_terminal().output({"organizations": rows}, columns=ORG_COLUMNS)


@management.command(
    name="set-default",
    help="Set the default organization.",
)
@click.argument("org_id")
@pass_cli
def set_default(cli_ctx: CliContext, org_id: str):
    cfg.set_default_organization(org_id)
    cli_ctx.get_terminal().success(f"Default organization set to {org_id}")


@management.command(
    name="remove",
    help="Remove an organization from the config file.",
)
@click.argument("org_id")
@pass_cli
def remove(cli_ctx: CliContext, org_id: str):
    cfg.remove_organization(org_id)
    cli_ctx.get_terminal().success(f"Removed {org_id}", {
        "defaultOrgId": cfg.get_default_organization(),
    })
