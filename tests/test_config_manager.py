import json
from pathlib import Path

import pytest

from multi_ssh_mcp.config_manager import ConfigManager
from multi_ssh_mcp.exceptions import ConfigError

_WEB1 = {"slug": "web1", "host": "10.0.0.1", "username": "root", "password": "p"}
_DB1 = {
    "slug": "db1",
    "host": "10.0.0.2",
    "port": 2222,
    "username": "postgres",
    "privateKeyPath": "/home/me/.ssh/id_ed25519",
    "passphrase": "pp",
    "timeout": 5000,
}


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # 避免读取仓库根目录下的 .env 或 ssh_mcp_config.json
    monkeypatch.chdir(tmp_path)


def test_config_manager_loads_json_then_env_overrides(tmp_path: Path) -> None:
    config_file = tmp_path / "ssh_mcp_config.json"
    config_file.write_text(
        json.dumps({"log_level": "WARNING", "servers": [_WEB1]}, ensure_ascii=False),
        encoding="utf-8",
    )

    manager = ConfigManager.load(config_file=config_file, environ={"SSH_MCP_LOG_LEVEL": "ERROR"})
    assert manager.settings.log_level == "ERROR"
    assert [s.slug for s in manager.settings.servers] == ["web1"]


def test_config_manager_uses_config_file_from_env(tmp_path: Path) -> None:
    config_file = tmp_path / "c.json"
    config_file.write_text(json.dumps({"log_level": "WARNING"}), encoding="utf-8")

    manager = ConfigManager.load(environ={"SSH_MCP_CONFIG_FILE": str(config_file)})
    assert manager.settings.log_level == "WARNING"
    assert manager.settings.config_file == config_file


def test_servers_from_config_env_win_over_file(tmp_path: Path) -> None:
    config_file = tmp_path / "ssh_mcp_config.json"
    config_file.write_text(json.dumps({"servers": [_WEB1]}), encoding="utf-8")

    manager = ConfigManager.load(
        config_file=config_file,
        environ={"SSH_MCP_CONFIG": json.dumps({"servers": [_DB1, _WEB1]})},
    )
    registry = manager.build_registry()

    assert registry.all_slugs() == ("db1", "web1")
    assert registry.default_slug == "db1"


def test_camel_case_fields_map_to_descriptor() -> None:
    manager = ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [_DB1]})})
    descriptor = manager.build_registry().get("db1")

    assert descriptor.port == 2222
    assert descriptor.username == "postgres"
    assert descriptor.private_key_path == "/home/me/.ssh/id_ed25519"
    assert descriptor.passphrase == "pp"
    assert descriptor.password is None
    assert descriptor.timeout_seconds == 5.0
    assert descriptor.auth_mode == "key_path"


def test_defaults_applied() -> None:
    manager = ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [_WEB1]})})
    descriptor = manager.build_registry().get("web1")

    assert descriptor.port == 22
    assert descriptor.timeout_ms == 10_000


def test_dotenv_file_read(tmp_path: Path) -> None:
    env_file = tmp_path / "custom.env"
    env_file.write_text("SSH_MCP_MAX_SESSIONS_PER_SERVER=1\n", encoding="utf-8")

    manager = ConfigManager.load(env_file=env_file, environ={})
    assert manager.settings.max_sessions_per_server == 1


def test_missing_credential_is_config_error() -> None:
    server = {k: v for k, v in _WEB1.items() if k != "password"}

    with pytest.raises(ConfigError) as exc_info:
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [server]})})

    assert exc_info.value.issues[0].startswith("servers.0")
    assert "password" in exc_info.value.issues[0]


def test_conflicting_credentials_is_config_error() -> None:
    server = {**_WEB1, "privateKey": "AAAA"}

    with pytest.raises(ConfigError, match="只能提供一种认证方式"):
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [server]})})


def test_passphrase_with_password_is_config_error() -> None:
    server = {**_WEB1, "passphrase": "pp"}

    with pytest.raises(ConfigError, match="passphrase"):
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [server]})})


@pytest.mark.parametrize("field", ["slug", "host", "username"])
def test_required_fields(field: str) -> None:
    server = {**_WEB1, field: ""}

    with pytest.raises(ConfigError) as exc_info:
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [server]})})

    assert any(issue.startswith(f"servers.0.{field}") for issue in exc_info.value.issues)


def test_invalid_port_is_config_error() -> None:
    server = {**_WEB1, "port": 0}

    with pytest.raises(ConfigError):
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps({"servers": [server]})})


def test_duplicate_slugs_rejected_when_building_registry() -> None:
    manager = ConfigManager.load(
        environ={"SSH_MCP_CONFIG": json.dumps({"servers": [_WEB1, {**_DB1, "slug": "web1"}]})}
    )

    with pytest.raises(ConfigError, match="重复"):
        manager.build_registry()


def test_empty_server_list_rejected_when_building_registry() -> None:
    manager = ConfigManager.load(environ={})

    with pytest.raises(ConfigError, match="至少需要配置一台"):
        manager.build_registry()


def test_malformed_config_env_is_config_error() -> None:
    with pytest.raises(ConfigError, match="不是合法的JSON"):
        ConfigManager.load(environ={"SSH_MCP_CONFIG": "{not json"})


def test_config_env_without_servers_key_is_config_error() -> None:
    with pytest.raises(ConfigError, match="servers"):
        ConfigManager.load(environ={"SSH_MCP_CONFIG": json.dumps([_WEB1])})


def test_config_file_must_be_object(tmp_path: Path) -> None:
    config_file = tmp_path / "ssh_mcp_config.json"
    config_file.write_text(json.dumps([_WEB1]), encoding="utf-8")

    with pytest.raises(ConfigError, match="JSON对象"):
        ConfigManager.load(config_file=config_file, environ={})
