"""Multi SSH MCP 自定义异常模块

定义项目中使用的所有自定义异常类，提供结构化的错误处理。
异常层次结构：
    SSHMCPError (基类)
    ├── ConfigError                - 服务器配置错误（启动时致命）
    └── SSHError                   - 运行时错误，携带服务器标识
        ├── UnknownServerError     - 服务器标识未注册
        ├── AuthConfigError        - 未配置或配置了多个认证凭据
        ├── CredentialLoadError    - 私钥文件不可读或私钥无法解码
        ├── ConnectTimeoutError    - 握手超时
        ├── ConnectFailureError    - 传输层报告的连接失败
        ├── ExecChannelError       - 无法在连接上打开执行通道
        └── StreamError            - 读取输出过程中失败
            └── CommandTimeoutError - 命令执行超时
"""
from __future__ import annotations


class SSHMCPError(Exception):
    """SSH MCP 基础异常类。

    所有自定义异常的基类，提供统一的错误消息格式。

    Attributes:
        message: 用户友好的错误描述信息
        details: 可选的附加错误详情字典
    """

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        """初始化基础异常。

        Args:
            message: 用户友好的错误描述信息
            details: 可选的附加错误详情
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_dict(self) -> dict[str, object]:
        """将异常转换为结构化的错误字典。

        Returns:
            包含error_type、message和details的字典
        """
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(SSHMCPError):
    """服务器配置错误。

    服务器列表为空、标识重复或字段不合法时抛出，启动阶段即失败。

    Attributes:
        issues: 逐条的配置问题描述
    """

    def __init__(
        self,
        message: str,
        *,
        issues: list[str] | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"issues": list(issues or []), **(details or {})}
        super().__init__(message, details=merged_details)
        self.issues = list(issues or [])


class SSHError(SSHMCPError):
    """SSH 运行时错误基类。

    所有跨越核心边界的错误都携带出错服务器的标识和底层原因，
    调用方总能知道是哪台服务器失败。

    Attributes:
        server_slug: 出错的服务器标识，未知时为None
        cause: 底层异常
    """

    def __init__(
        self,
        message: str,
        *,
        server_slug: str | None = None,
        cause: BaseException | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """初始化SSH运行时错误。

        Args:
            message: 错误描述信息
            server_slug: 出错的服务器标识
            cause: 底层异常
            details: 附加错误详情
        """
        merged_details: dict[str, object] = {"server_slug": server_slug, **(details or {})}
        if cause is not None:
            merged_details.setdefault("cause", f"{type(cause).__name__}: {cause}")
        super().__init__(message, details=merged_details)
        self.server_slug = server_slug
        self.cause = cause

    def render(self) -> str:
        """渲染为面向调用方的单行错误描述。

        Returns:
            形如 ``SSHError [web1]: message`` 的字符串
        """
        return f"SSHError [{self.server_slug or 'unknown'}]: {self.message}"


class UnknownServerError(SSHError):
    """服务器标识未在注册表中找到。"""


class AuthConfigError(SSHError):
    """认证配置错误：未提供凭据或同时提供了多个凭据。"""


class CredentialLoadError(SSHError):
    """凭据加载错误：私钥文件不可读或私钥内容无法解码。"""


class ConnectTimeoutError(SSHError):
    """SSH握手未在服务器配置的超时时间内完成。

    Attributes:
        timeout_seconds: 生效的超时时间（秒）
    """

    def __init__(
        self,
        message: str,
        *,
        server_slug: str | None = None,
        timeout_seconds: float = 0.0,
        cause: BaseException | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"timeout_seconds": timeout_seconds, **(details or {})}
        super().__init__(message, server_slug=server_slug, cause=cause, details=merged_details)
        self.timeout_seconds = timeout_seconds


class ConnectFailureError(SSHError):
    """传输层报告的连接失败（拒绝连接、认证失败、握手中断等）。"""


class ExecChannelError(SSHError):
    """在已建立的连接上无法打开命令执行通道。"""


class StreamError(SSHError):
    """通道打开后读取输出过程中失败。

    Attributes:
        command: 正在执行的命令
    """

    def __init__(
        self,
        message: str,
        *,
        server_slug: str | None = None,
        command: str = "",
        cause: BaseException | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"command": command, **(details or {})}
        super().__init__(message, server_slug=server_slug, cause=cause, details=merged_details)
        self.command = command


class CommandTimeoutError(StreamError):
    """命令未在超时时间内结束，已收集的部分输出被丢弃。"""
