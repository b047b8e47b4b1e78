from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import asyncssh
from loguru import logger

from multi_ssh_mcp.connection_pool import ConnectionPool
from multi_ssh_mcp.exceptions import (
    CommandTimeoutError,
    ConnectFailureError,
    ConnectTimeoutError,
    ExecChannelError,
    SSHError,
    StreamError,
)
from multi_ssh_mcp.server_registry import ServerRegistry
from multi_ssh_mcp.settings import SSHMCPSettings


def _to_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


def _to_exit_code(value: int | None) -> int:
    # 进程被信号终止时 asyncssh 报告 -1
    if value is None or value < 0:
        return 0
    return int(value)


@dataclass(frozen=True)
class CommandResult:
    server_slug: str
    command: str
    stdout: str
    stderr: str
    exit_code: int


class CommandExecutor:
    def __init__(
        self,
        *,
        registry: ServerRegistry,
        pool: ConnectionPool,
        settings: SSHMCPSettings,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._settings = settings

    async def execute(
        self,
        command: str,
        server: str | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        """在指定服务器上执行一条命令。

        未指定服务器时使用注册表中的默认服务器。不分配PTY，不自动重试；
        命令超时或读取失败时已收集的输出全部丢弃。

        timeout_seconds 是本次调用的总时限，同时限制获取连接和执行命令；
        为 None 时只有命令执行受 command_timeout_seconds 限制，建连由
        服务器描述符的超时时间限制。

        Args:
            command: 要执行的命令
            server: 服务器标识，None或空字符串表示默认服务器
            timeout_seconds: 本次调用的总时限（秒）

        Returns:
            CommandResult: 完整的执行结果

        Raises:
            SSHError: 任何连接或执行失败，均携带服务器标识
        """
        slug = server or self._registry.default_slug
        if not command.strip():
            raise ExecChannelError("命令不能为空", server_slug=slug)

        loop = asyncio.get_running_loop()
        deadline = None if timeout_seconds is None else loop.time() + timeout_seconds

        conn = await self._acquire(slug, timeout_seconds)

        if deadline is None:
            timeout = float(self._settings.command_timeout_seconds)
        else:
            timeout = max(deadline - loop.time(), 0.0)

        async with self._pool.channel_slot(slug):
            logger.debug("在服务器 {} 上执行命令: {}", slug, command)
            try:
                # 退出 async with 时关闭通道，之后才释放通道名额
                async with conn.create_process(
                    command,
                    term_type=None,
                    encoding="utf-8",
                    errors="replace",
                ) as process:
                    completed = await process.wait(check=False, timeout=timeout)
            except asyncssh.ChannelOpenError as exc:
                self._pool.evict(slug, conn)
                raise ExecChannelError(
                    f"无法打开执行通道: {exc}",
                    server_slug=slug,
                    cause=exc,
                ) from exc
            # asyncssh.TimeoutError 同时是 asyncio.TimeoutError 的子类
            except asyncio.TimeoutError as exc:
                raise CommandTimeoutError(
                    f"命令执行超时（{timeout:.3g}秒）",
                    server_slug=slug,
                    command=command,
                    cause=exc,
                ) from exc
            except asyncssh.DisconnectError as exc:
                self._pool.evict(slug, conn)
                raise StreamError(
                    f"命令执行期间连接断开: {exc}",
                    server_slug=slug,
                    command=command,
                    cause=exc,
                ) from exc
            except (asyncssh.Error, OSError) as exc:
                raise StreamError(
                    f"读取命令输出失败: {exc}",
                    server_slug=slug,
                    command=command,
                    cause=exc,
                ) from exc

        result = CommandResult(
            server_slug=slug,
            command=command,
            stdout=_to_text(completed.stdout),
            stderr=_to_text(completed.stderr),
            exit_code=_to_exit_code(completed.exit_status),
        )
        logger.debug("服务器 {} 命令执行完成，退出码: {}", slug, result.exit_code)
        return result

    async def _acquire(
        self, slug: str, timeout_seconds: float | None
    ) -> asyncssh.SSHClientConnection:
        """获取连接；调用方时限到达时放弃等待，共享的建连任务继续进行。"""
        try:
            if timeout_seconds is None:
                return await self._pool.acquire(slug)
            return await asyncio.wait_for(self._pool.acquire(slug), timeout=timeout_seconds)
        except SSHError:
            raise
        except asyncio.TimeoutError as exc:
            raise ConnectTimeoutError(
                f"获取连接超时（{timeout_seconds:.3g}秒）",
                server_slug=slug,
                timeout_seconds=timeout_seconds,
                cause=exc,
            ) from exc
        except Exception as exc:
            raise ConnectFailureError(
                f"无法连接服务器 {slug}: {exc}",
                server_slug=slug,
                cause=exc,
            ) from exc

    def list_servers(self) -> list[dict[str, Any]]:
        default = self._registry.default_slug
        return [
            {
                "slug": d.slug,
                "host": d.host,
                "port": d.port,
                "username": d.username,
                "default": d.slug == default,
            }
            for d in self._registry
        ]

    async def close(self) -> None:
        await self._pool.release_all()
