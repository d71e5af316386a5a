"""Configuration for the MCP Boss SDK and CLI.

Credentials are resolved by trying a list of strategies in order:
- explicit options passed to the client (api key + org id or base url)
- environment variables (MCPBOSS_API_KEY, MCPBOSS_ORG_ID, MCPBOSS_BASE_URL)
- the settings file (~/.mcpboss.config, or MCPBOSS_CONFIG_FILE)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".mcpboss.config"
DEFAULT_DOMAIN = "mcp-boss.com"


def default_base_url(org_id: str) -> str:
    return f"https://{org_id}.{DEFAULT_DOMAIN}"


def get_config_file_path() -> Path:
    override = os.environ.get("MCPBOSS_CONFIG_FILE")
    if override:
        return Path(override)
    return Path.home() / CONFIG_FILE_NAME


@dataclass
class TokenSet:
    """OIDC tokens stored for an organization."""

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0  # unix timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }


@dataclass
class OrganizationConfig:
    """Stored settings for one organization."""

    base_url: str
    api_key: Optional[str] = None
    tokens: Optional[TokenSet] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrganizationConfig":
        tokens = data.get("tokens")
        return cls(
            base_url=data.get("baseUrl", ""),
            api_key=data.get("apiKey"),
            tokens=TokenSet(
                access_token=tokens.get("access_token", ""),
                refresh_token=tokens.get("refresh_token", ""),
                expires_at=int(tokens.get("expires_at") or 0),
            ) if isinstance(tokens, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"baseUrl": self.base_url}
        if self.api_key:
            data["apiKey"] = self.api_key
        if self.tokens:
            data["tokens"] = self.tokens.to_dict()
        return data


@dataclass
class SettingsFile:
    """Contents of the settings file."""

    orgs: Dict[str, OrganizationConfig] = field(default_factory=dict)
    default_org_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"orgs": {k: v.to_dict() for k, v in self.orgs.items()}}
        if self.default_org_id:
            data["defaultOrgId"] = self.default_org_id
        return data


def read_settings() -> SettingsFile:
    """Read the settings file.

    Missing or malformed files read as empty settings. Legacy flat files
    ({"orgId", "apiKey", "baseUrl"}) are migrated to the org map.
    """
    path = get_config_file_path()
    if not path.exists():
        return SettingsFile()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return SettingsFile()

    if not isinstance(raw, dict):
        return SettingsFile()

    if raw.get("orgId") and not raw.get("orgs"):
        base_url = raw.get("baseUrl") or default_base_url(raw["orgId"])
        raw = {
            "orgs": {base_url: {"baseUrl": base_url, "apiKey": raw.get("apiKey")}},
            "defaultOrgId": base_url,
        }

    orgs = {
        org_id: OrganizationConfig.from_dict(org)
        for org_id, org in (raw.get("orgs") or {}).items()
        if isinstance(org, dict)
    }
    return SettingsFile(orgs=orgs, default_org_id=raw.get("defaultOrgId"))


def write_settings(settings: SettingsFile) -> None:
    path = get_config_file_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to write config file: {e}") from e


def set_organization_config(
    org_id: str,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    tokens: Optional[TokenSet] = None,
) -> None:
    """Create or update an organization entry, merging with stored values."""
    settings = read_settings()
    org = settings.orgs.get(org_id) or OrganizationConfig(base_url=base_url or default_base_url(org_id))
    if base_url:
        org.base_url = base_url
    if api_key:
        org.api_key = api_key
    if tokens:
        org.tokens = tokens
    settings.orgs[org_id] = org

    # First organization becomes the default
    if not settings.default_org_id:
        settings.default_org_id = org_id

    write_settings(settings)


def get_organization(org_id: str) -> Optional[OrganizationConfig]:
    orgs = read_settings().orgs
    return orgs.get(org_id) or orgs.get(org_id.lower())


def list_organizations() -> List[str]:
    return list(read_settings().orgs)


def get_default_organization() -> Optional[str]:
    return read_settings().default_org_id


def set_default_organization(org_id: str) -> None:
    settings = read_settings()
    if org_id not in settings.orgs:
        raise ConfigError(f"{org_id} not found in config")
    settings.default_org_id = org_id
    write_settings(settings)


def remove_organization(org_id: str) -> None:
    settings = read_settings()
    if org_id not in settings.orgs:
        raise ConfigError(f"{org_id} not found in config")

    del settings.orgs[org_id]

    if settings.default_org_id == org_id:
        remaining = list(settings.orgs)
        settings.default_org_id = remaining[0] if remaining else None

    write_settings(settings)


@dataclass
class McpBossConfig:
    """Resolved connection settings.

    `token` is called for every request, so a stored credential that changes
    between requests is picked up without rebuilding the client.
    """

    base_url: str
    token: Callable[[], str] = field(repr=False)
    source: str = "options"

    @property
    def api_url(self) -> str:
        """Base URL of the versioned REST API (always ends with a slash)."""
        return f"{self.base_url.rstrip('/')}/api/v1/"

    def to_dict(self) -> Dict[str, Any]:
        return {"baseUrl": self.base_url, "apiUrl": self.api_url, "source": self.source}


class ConfigStrategy:
    """One way of finding connection settings."""

    def get_config(self) -> Optional[McpBossConfig]:
        raise NotImplementedError


def _static_token(value: str) -> Callable[[], str]:
    return lambda: value


class OptionsConfigStrategy(ConfigStrategy):
    def __init__(
        self,
        api_key: Optional[str] = None,
        org_id: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.api_key = api_key
        self.org_id = org_id
        self.base_url = base_url

    def get_config(self) -> Optional[McpBossConfig]:
        if self.api_key and (self.org_id or self.base_url):
            return McpBossConfig(
                base_url=self.base_url or default_base_url(self.org_id),
                token=_static_token(self.api_key),
                source="options",
            )
        return None


class EnvConfigStrategy(ConfigStrategy):
    def get_config(self) -> Optional[McpBossConfig]:
        api_key = os.environ.get("MCPBOSS_API_KEY")
        org_id = os.environ.get("MCPBOSS_ORG_ID")
        base_url = os.environ.get("MCPBOSS_BASE_URL")
        if api_key and (org_id or base_url):
            return McpBossConfig(
                base_url=base_url or default_base_url(org_id),
                token=_static_token(api_key),
                source="env",
            )
        return None


class FileConfigStrategy(ConfigStrategy):
    def __init__(self, org_id: Optional[str] = None):
        self.org_id = org_id

    def get_config(self) -> Optional[McpBossConfig]:
        org_id = self.org_id or os.environ.get("MCPBOSS_ORG_ID") or get_default_organization()
        if not org_id:
            return None

        logger.debug(f"Loading config for org {org_id} from {get_config_file_path()}")
        if get_organization(org_id) is None:
            return None

        def token() -> str:
            # Re-read on every call so a login from another process is honoured
            org = get_organization(org_id)
            if org is None:
                raise ConfigError(f"{org_id} was removed from the config file")
            if org.api_key:
                return org.api_key
            if org.tokens and org.tokens.access_token:
                return org.tokens.access_token
            if org.tokens and org.tokens.refresh_token:
                raise ConfigError(
                    f"Access token for {org_id} is missing; log in again to refresh it"
                )
            raise ConfigError("No valid API key, access token or refresh token available.")

        return McpBossConfig(
            base_url=get_organization(org_id).base_url,
            token=token,
            source="file",
        )


class ConfigLoader:
    """Tries each strategy in order and returns the first match."""

    def __init__(self, strategies: Sequence[ConfigStrategy]):
        self.strategies = list(strategies)

    @classmethod
    def default(
        cls,
        api_key: Optional[str] = None,
        org_id: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> "ConfigLoader":
        return cls([
            OptionsConfigStrategy(api_key=api_key, org_id=org_id, base_url=base_url),
            EnvConfigStrategy(),
            FileConfigStrategy(org_id=org_id),
        ])

    def get_config(self) -> McpBossConfig:
        for strategy in self.strategies:
            config = strategy.get_config()
            if config:
                return config
        raise ConfigError("No valid configuration found from any strategy")
