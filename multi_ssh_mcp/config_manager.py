from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError

from multi_ssh_mcp.exceptions import ConfigError
from multi_ssh_mcp.server_registry import ServerRegistry
from multi_ssh_mcp.settings import SSHMCPSettings

# 与 servers 字段不同，该变量承载完整的 {"servers": [...]} JSON 对象
SERVERS_CONFIG_ENV = "SSH_MCP_CONFIG"


class ConfigManager:
    def __init__(self, settings: SSHMCPSettings) -> None:
        self.settings = settings

    @classmethod
    def load(
        cls,
        *,
        config_file: Path | None = None,
        env_file: Path | None = None,
        env_prefix: str = "SSH_MCP_",
        environ: Mapping[str, str] | None = None,
    ) -> ConfigManager:
        """按 环境变量 > .env > JSON配置文件 > 默认值 的优先级加载配置。

        Raises:
            ConfigError: 配置文件或服务器列表结构不合法
        """
        env = os.environ if environ is None else environ
        config_path = config_file or Path(
            env.get(f"{env_prefix}CONFIG_FILE", "ssh_mcp_config.json")
        )

        json_data: dict[str, Any] = {}
        if config_path.exists() and config_path.is_file():
            json_data = cls._read_json(config_path)

        dotenv_data: dict[str, Any] = {}
        if env_file is not None:
            dotenv_data = cls._read_dotenv(env_file, env_prefix)
        elif Path(".env").exists():
            dotenv_data = cls._read_dotenv(Path(".env"), env_prefix)

        env_data = cls._read_env(env, env_prefix)
        merged: dict[str, Any] = {
            **json_data,
            **dotenv_data,
            **env_data,
            "config_file": config_path,
        }

        servers_json = env.get(SERVERS_CONFIG_ENV)
        if servers_json:
            merged["servers"] = cls._parse_servers_config(servers_json)

        try:
            settings = SSHMCPSettings.model_validate(merged)
        except ValidationError as exc:
            issues = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            ]
            raise ConfigError(
                "SSH配置无效:\n" + "\n".join(f"  - {i}" for i in issues),
                issues=issues,
            ) from exc
        return cls(settings)

    def build_registry(self) -> ServerRegistry:
        """根据已加载的服务器列表构造注册表。

        Raises:
            ConfigError: 服务器列表为空或标识重复
        """
        return ServerRegistry.from_settings(self.settings)

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"配置文件不是合法的JSON: {path} - {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("配置文件必须是JSON对象")
        return raw

    @staticmethod
    def _parse_servers_config(raw: str) -> Any:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{SERVERS_CONFIG_ENV} 不是合法的JSON: {exc}") from exc
        if not isinstance(parsed, dict) or "servers" not in parsed:
            raise ConfigError(f"{SERVERS_CONFIG_ENV} 必须是包含servers数组的JSON对象")
        return parsed["servers"]

    @staticmethod
    def _read_dotenv(path: Path, env_prefix: str) -> dict[str, Any]:
        raw = dotenv_values(path)
        return ConfigManager._read_env(raw, env_prefix)

    @staticmethod
    def _read_env(mapping: Mapping[str, Any], env_prefix: str) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name in SSHMCPSettings.model_fields.keys():
            env_key = f"{env_prefix}{field_name.upper()}"
            if env_key in mapping and mapping[env_key] not in (None, ""):
                value = mapping[env_key]
                if field_name == "servers" and isinstance(value, str):
                    try:
                        value = json.loads(value)
                    except json.JSONDecodeError as exc:
                        raise ConfigError(f"{env_key} 不是合法的JSON: {exc}") from exc
                data[field_name] = value
        return data
