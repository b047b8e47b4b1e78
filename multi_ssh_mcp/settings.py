"""SSH MCP 配置设置模块

使用 Pydantic Settings 管理配置，支持以下配置方式（优先级从高到低）：
1. 环境变量（前缀：SSH_MCP_）
2. .env 文件
3. JSON 配置文件
4. 默认值

服务器列表可写在 JSON 配置文件的 servers 字段中，也可以通过
SSH_MCP_CONFIG 环境变量传入 {"servers": [...]} 形式的 JSON。

示例环境变量：
    SSH_MCP_LOG_LEVEL=DEBUG
    SSH_MCP_MAX_SESSIONS_PER_SERVER=1
    SSH_MCP_CONFIG='{"servers": [{"slug": "web1", "host": "10.0.0.1", ...}]}'
"""
from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from multi_ssh_mcp.server_registry import DEFAULT_SSH_PORT, DEFAULT_TIMEOUT_MS, ServerDescriptor

# Known hosts 策略类型
KnownHostsPolicy = Literal["ignore", "default"]


class ServerConfig(BaseModel):
    """单台服务器的配置输入。

    字段名同时接受 camelCase（privateKeyPath）与 snake_case（private_key_path）。
    password / privateKeyPath / privateKey 三者必须且只能提供一个。
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    slug: str = Field(min_length=1, description="服务器唯一标识")
    host: str = Field(min_length=1, description="主机名或IP地址")
    port: int = Field(default=DEFAULT_SSH_PORT, gt=0, le=65535, description="SSH端口")
    username: str = Field(min_length=1, description="SSH用户名")
    password: str | None = Field(default=None, description="SSH密码")
    private_key_path: str | None = Field(
        default=None, alias="privateKeyPath", description="私钥文件路径"
    )
    private_key: str | None = Field(
        default=None, alias="privateKey", description="Base64编码的私钥内容"
    )
    passphrase: str | None = Field(default=None, description="私钥口令")
    timeout: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, description="连接超时(毫秒)")

    @model_validator(mode="after")
    def _check_credentials(self) -> ServerConfig:
        provided = [
            name
            for name, value in (
                ("password", self.password),
                ("privateKeyPath", self.private_key_path),
                ("privateKey", self.private_key),
            )
            if value
        ]
        if not provided:
            raise ValueError("必须提供password、privateKeyPath或privateKey中的一个")
        if len(provided) > 1:
            raise ValueError(f"只能提供一种认证方式，实际提供了: {', '.join(provided)}")
        if self.passphrase and self.password:
            raise ValueError("passphrase仅能与privateKeyPath或privateKey一起使用")
        return self

    def to_descriptor(self) -> ServerDescriptor:
        """转换为不可变的服务器描述符。

        Returns:
            ServerDescriptor: 服务器描述符
        """
        return ServerDescriptor(
            slug=self.slug,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password or None,
            private_key_path=self.private_key_path or None,
            private_key=self.private_key or None,
            passphrase=self.passphrase or None,
            timeout_ms=self.timeout,
        )


class SSHMCPSettings(BaseSettings):
    """SSH MCP 服务器配置类。

    支持通过环境变量、.env文件、JSON配置文件或默认值进行配置。
    环境变量前缀为 SSH_MCP_。
    """

    model_config = SettingsConfigDict(env_prefix="SSH_MCP_", extra="ignore")

    # 配置文件路径
    config_file: Path = Field(default=Path("ssh_mcp_config.json"))

    # 服务器列表
    servers: list[ServerConfig] = Field(default_factory=list, description="服务器列表")

    # 日志配置
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=Path("logs"), description="日志目录")
    log_rotation: str = Field(default="10 MB", description="日志轮转大小")
    log_retention: str = Field(default="30 days", description="日志保留时间")

    # 连接池配置
    command_timeout_seconds: float = Field(
        default=30, gt=0, description="命令执行超时时间(秒)"
    )
    max_sessions_per_server: int = Field(
        default=10, ge=1, description="每台服务器同时打开的最大执行通道数，1表示串行执行"
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0, gt=0, description="关闭全部连接的最长等待时间(秒)"
    )

    # SSH 安全配置
    known_hosts_policy: KnownHostsPolicy = Field(
        default="ignore",
        description="Known hosts 策略: ignore(不校验), default(使用asyncssh默认的known_hosts校验)",
    )
