"""服务器注册表模块

维护服务器标识到连接描述符的不可变映射：
- 构造时校验标识非空且唯一
- 保留声明顺序，第一台服务器作为默认目标
"""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from multi_ssh_mcp.exceptions import ConfigError, UnknownServerError

if TYPE_CHECKING:
    from multi_ssh_mcp.settings import SSHMCPSettings

DEFAULT_SSH_PORT = 22
DEFAULT_TIMEOUT_MS = 10_000

AuthMode = Literal["password", "key_path", "key_data", "none", "conflict"]


@dataclass(frozen=True)
class ServerDescriptor:
    """单台服务器的连接描述符。

    Attributes:
        slug: 服务器唯一标识
        host: 主机地址
        port: SSH端口
        username: SSH用户名
        password: SSH密码
        private_key_path: 私钥文件路径
        private_key: Base64编码的私钥内容
        passphrase: 私钥口令
        timeout_ms: 握手超时时间（毫秒）
    """

    slug: str
    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    password: str | None = None
    private_key_path: str | None = None
    private_key: str | None = None
    passphrase: str | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def auth_mode(self) -> AuthMode:
        provided: list[AuthMode] = []
        if self.password:
            provided.append("password")
        if self.private_key_path:
            provided.append("key_path")
        if self.private_key:
            provided.append("key_data")
        if not provided:
            return "none"
        if len(provided) > 1:
            return "conflict"
        return provided[0]

    def __repr__(self) -> str:
        # 不输出凭据
        return (
            f"ServerDescriptor(slug={self.slug!r}, host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, auth_mode={self.auth_mode!r})"
        )


class ServerRegistry:
    """服务器注册表。

    只读映射，按声明顺序保存服务器描述符。通过 load() 构造，
    校验失败时抛出 ConfigError，不会留下部分注册的状态。
    """

    def __init__(self, descriptors: dict[str, ServerDescriptor]) -> None:
        self._descriptors = descriptors
        self._order = tuple(descriptors)

    @classmethod
    def load(cls, descriptors: Iterable[ServerDescriptor]) -> ServerRegistry:
        """校验并构造注册表。

        Args:
            descriptors: 按声明顺序排列的服务器描述符

        Returns:
            ServerRegistry: 注册表

        Raises:
            ConfigError: 列表为空、标识为空或标识重复时抛出
        """
        items = list(descriptors)
        if not items:
            raise ConfigError("至少需要配置一台SSH服务器")

        mapping: dict[str, ServerDescriptor] = {}
        issues: list[str] = []
        for index, descriptor in enumerate(items):
            if not descriptor.slug:
                issues.append(f"servers.{index}.slug: 服务器标识不能为空")
                continue
            if descriptor.slug in mapping:
                issues.append(f"servers.{index}.slug: 服务器标识重复: {descriptor.slug}")
                continue
            mapping[descriptor.slug] = descriptor

        if issues:
            raise ConfigError("服务器配置无效:\n" + "\n".join(f"  - {i}" for i in issues), issues=issues)
        return cls(mapping)

    @classmethod
    def from_settings(cls, settings: SSHMCPSettings) -> ServerRegistry:
        """从配置中的服务器列表构造注册表。"""
        return cls.load(server.to_descriptor() for server in settings.servers)

    def get(self, slug: str) -> ServerDescriptor:
        """按标识查找服务器描述符。

        Raises:
            UnknownServerError: 标识未注册时抛出
        """
        descriptor = self._descriptors.get(slug)
        if descriptor is None:
            raise UnknownServerError(f"未知的服务器标识: {slug}", server_slug=slug)
        return descriptor

    @property
    def default_slug(self) -> str:
        return self._order[0]

    def all_slugs(self) -> tuple[str, ...]:
        return self._order

    def __contains__(self, slug: object) -> bool:
        return slug in self._descriptors

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[ServerDescriptor]:
        return (self._descriptors[slug] for slug in self._order)
