import json

import pytest

from mcpboss import config
from mcpboss.config import (
    ConfigLoader,
    EnvConfigStrategy,
    FileConfigStrategy,
    OptionsConfigStrategy,
    TokenSet,
)
from mcpboss.exceptions import ConfigError


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "mcpboss.config"
    monkeypatch.setenv("MCPBOSS_CONFIG_FILE", str(path))
    for name in ("MCPBOSS_API_KEY", "MCPBOSS_ORG_ID", "MCPBOSS_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    return path


def test_missing_file_reads_as_empty(config_file):
    settings = config.read_settings()
    assert settings.orgs == {}
    assert settings.default_org_id is None


def test_malformed_file_reads_as_empty(config_file):
    config_file.write_text("{not json")
    assert config.read_settings().orgs == {}


def test_legacy_file_is_migrated(config_file):
    config_file.write_text(json.dumps({"orgId": "acme", "apiKey": "key-1"}))

    settings = config.read_settings()

    assert settings.default_org_id == "https://acme.mcp-boss.com"
    org = settings.orgs["https://acme.mcp-boss.com"]
    assert org.api_key == "key-1"
    assert org.base_url == "https://acme.mcp-boss.com"


def test_first_org_becomes_default(config_file):
    config.set_organization_config("acme", api_key="key-1")
    config.set_organization_config("globex", api_key="key-2")

    assert config.get_default_organization() == "acme"
    assert config.list_organizations() == ["acme", "globex"]
    assert config.get_organization("globex").base_url == "https://globex.mcp-boss.com"

    saved = json.loads(config_file.read_text())
    assert saved["orgs"]["acme"] == {"baseUrl": "https://acme.mcp-boss.com", "apiKey": "key-1"}


def test_set_organization_merges(config_file):
    config.set_organization_config("acme", base_url="http://localhost:3000", api_key="key-1")
    config.set_organization_config("acme", api_key="key-2")

    org = config.get_organization("acme")
    assert org.base_url == "http://localhost:3000"
    assert org.api_key == "key-2"


def test_get_organization_falls_back_to_lowercase(config_file):
    config.set_organization_config("acme", api_key="key-1")
    assert config.get_organization("ACME").api_key == "key-1"


def test_remove_default_picks_next(config_file):
    config.set_organization_config("acme", api_key="key-1")
    config.set_organization_config("globex", api_key="key-2")

    config.remove_organization("acme")

    assert config.list_organizations() == ["globex"]
    assert config.get_default_organization() == "globex"


def test_remove_unknown_org_raises(config_file):
    with pytest.raises(ConfigError):
        config.remove_organization("nobody")
    with pytest.raises(ConfigError):
        config.set_default_organization("nobody")


def test_options_strategy():
    resolved = OptionsConfigStrategy(api_key="k", org_id="acme").get_config()
    assert resolved.base_url == "https://acme.mcp-boss.com"
    assert resolved.api_url == "https://acme.mcp-boss.com/api/v1/"
    assert resolved.token() == "k"

    assert OptionsConfigStrategy(api_key="k").get_config() is None


def test_env_strategy(config_file, monkeypatch):
    assert EnvConfigStrategy().get_config() is None

    monkeypatch.setenv("MCPBOSS_API_KEY", "env-key")
    monkeypatch.setenv("MCPBOSS_BASE_URL", "http://localhost:3000/")

    resolved = EnvConfigStrategy().get_config()
    assert resolved.source == "env"
    assert resolved.api_url == "http://localhost:3000/api/v1/"
    assert resolved.token() == "env-key"


def test_strategies_resolve_in_order(config_file, monkeypatch):
    config.set_organization_config("acme", api_key="file-key")
    monkeypatch.setenv("MCPBOSS_API_KEY", "env-key")
    monkeypatch.setenv("MCPBOSS_ORG_ID", "globex")

    assert ConfigLoader.default(api_key="opt-key", org_id="initech").get_config().token() == "opt-key"
    assert ConfigLoader.default().get_config().source == "env"

    monkeypatch.delenv("MCPBOSS_API_KEY")
    monkeypatch.delenv("MCPBOSS_ORG_ID")
    resolved = ConfigLoader.default().get_config()
    assert resolved.source == "file"
    assert resolved.token() == "file-key"


def test_no_strategy_matches(config_file):
    with pytest.raises(ConfigError):
        ConfigLoader.default().get_config()


def test_file_token_reread_per_call(config_file):
    config.set_organization_config("acme", api_key="old-key")
    resolved = FileConfigStrategy("acme").get_config()
    assert resolved.token() == "old-key"

    config.set_organization_config("acme", api_key="new-key")
    assert resolved.token() == "new-key"


def test_file_access_token(config_file):
    config.set_organization_config("acme", tokens=TokenSet(access_token="access-1", refresh_token="refresh-1"))
    assert FileConfigStrategy("acme").get_config().token() == "access-1"


def test_file_refresh_token_only_raises(config_file):
    config.set_organization_config("acme", tokens=TokenSet(refresh_token="refresh-1"))
    resolved = FileConfigStrategy("acme").get_config()
    with pytest.raises(ConfigError, match="log in again"):
        resolved.token()
