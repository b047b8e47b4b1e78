"""SSH连接池管理模块

按服务器标识维护可复用的SSH连接，支持：
- 首次使用时懒建立连接，之后复用同一连接
- 连接请求合并：同一服务器的并发请求共享同一次建连
- 被动失效：连接关闭时立即从池中剔除，下次请求重新建连
- 每服务器执行通道数限制（信号量控制）
- 关闭时尽力释放所有连接
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import asyncssh
from loguru import logger

from multi_ssh_mcp.auth_manager import AuthManager
from multi_ssh_mcp.exceptions import ConnectFailureError, ConnectTimeoutError
from multi_ssh_mcp.server_registry import ServerDescriptor, ServerRegistry
from multi_ssh_mcp.settings import SSHMCPSettings

ConnectionLostCallback = Callable[[asyncssh.SSHClientConnection, Exception | None], None]


class _EvictingClient(asyncssh.SSHClient):
    """连接关闭时通知连接池的 asyncssh 客户端回调。"""

    def __init__(self, on_lost: ConnectionLostCallback) -> None:
        self._on_lost = on_lost
        self._conn: asyncssh.SSHClientConnection | None = None

    def connection_made(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    def connection_lost(self, exc: Exception | None) -> None:
        if self._conn is not None:
            self._on_lost(self._conn, exc)


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # 所有等待者都已取消时，避免 "exception was never retrieved" 警告
    if not task.cancelled():
        task.exception()


class ConnectionPool:
    """异步SSH连接池。

    每个服务器标识最多对应一个正在进行的建连任务和一个存活连接。
    标识到连接的映射是唯一的共享可变状态，由 _lock 保护
    acquire 中"检查存活 -> 检查进行中 -> 发起新建连"的原子性。

    Attributes:
        _registry: 服务器注册表
        _settings: SSH MCP配置
    """

    def __init__(
        self,
        *,
        registry: ServerRegistry,
        settings: SSHMCPSettings,
        auth: AuthManager | None = None,
    ) -> None:
        """初始化连接池。

        Args:
            registry: 服务器注册表
            settings: SSH MCP配置
            auth: 凭据解析器，默认新建 AuthManager
        """
        self._registry = registry
        self._settings = settings
        self._auth = auth or AuthManager()

        self._lock = asyncio.Lock()
        self._live: dict[str, asyncssh.SSHClientConnection] = {}

        # 连接请求合并：标识 -> 正在进行的建连任务
        self._pending: dict[str, asyncio.Task[asyncssh.SSHClientConnection]] = {}

        self._semaphores: dict[str, asyncio.BoundedSemaphore] = {}
        self._closing: set[asyncio.Task[None]] = set()

    async def acquire(self, slug: str) -> asyncssh.SSHClientConnection:
        """获取指定服务器的可用连接。

        已有存活连接时直接返回（不做网络探测）；已有进行中的建连时
        等待并共享其结果；否则发起新的建连。

        Args:
            slug: 服务器标识

        Returns:
            asyncssh.SSHClientConnection: SSH连接

        Raises:
            UnknownServerError: 标识未注册
            AuthConfigError: 未配置可用凭据
            CredentialLoadError: 私钥读取或解码失败
            ConnectTimeoutError: 握手超时
            ConnectFailureError: 其他连接失败
        """
        descriptor = self._registry.get(slug)

        async with self._lock:
            conn = self._live.get(slug)
            if conn is not None:
                if not self._is_connection_dead(conn):
                    return conn
                del self._live[slug]
                self._close_in_background(slug, conn)

            task = self._pending.get(slug)
            if task is None:
                task = asyncio.create_task(self._establish(descriptor), name=f"ssh-connect-{slug}")
                task.add_done_callback(_retrieve_exception)
                self._pending[slug] = task
            else:
                logger.debug("服务器 {} 正在建连，等待已有请求完成", slug)

        # shield: 单个等待者被取消不影响共享的建连任务
        return await asyncio.shield(task)

    async def release(self, slug: str) -> None:
        """关闭指定服务器的连接。

        幂等，尽力而为；关闭过程中的异常只记录日志。
        进行中的建连被放弃，其结果在完成后直接关闭。

        Args:
            slug: 服务器标识
        """
        async with self._lock:
            conn = self._live.pop(slug, None)
            abandoned = self._pending.pop(slug, None)

        if abandoned is not None:
            logger.info("放弃服务器 {} 正在进行的建连", slug)
        if conn is not None:
            logger.info("关闭服务器 {} 的连接", slug)
            await self._close_quietly(slug, conn)

    async def release_all(self) -> None:
        """关闭所有连接。

        用于进程退出。进行中的建连被放弃；每个连接的关闭等待时间
        受 shutdown_timeout_seconds 限制，不会无限阻塞。
        """
        async with self._lock:
            live = list(self._live.items())
            self._live.clear()
            abandoned = list(self._pending)
            self._pending.clear()

        for slug in abandoned:
            logger.info("放弃服务器 {} 正在进行的建连", slug)

        await asyncio.gather(
            *[self._close_quietly(slug, conn) for slug, conn in live],
            return_exceptions=True,
        )

    def evict(self, slug: str, connection: asyncssh.SSHClientConnection | None = None) -> None:
        """将连接从池中剔除并在后台关闭。

        Args:
            slug: 服务器标识
            connection: 仅当池中连接是该对象时才剔除；None 表示无条件剔除
        """
        current = self._live.get(slug)
        if current is None or (connection is not None and current is not connection):
            return
        del self._live[slug]
        logger.warning("服务器 {} 的连接已失效，已从连接池移除", slug)
        self._close_in_background(slug, current)

    @asynccontextmanager
    async def channel_slot(self, slug: str) -> AsyncIterator[None]:
        """占用指定服务器的一个执行通道名额。

        打开通道前获取，通道关闭后释放。max_sessions_per_server=1
        时同一服务器上的命令严格串行。

        Args:
            slug: 服务器标识
        """
        sem = await self._get_semaphore(slug)
        async with sem:
            yield

    async def _get_semaphore(self, slug: str) -> asyncio.BoundedSemaphore:
        async with self._lock:
            sem = self._semaphores.get(slug)
            if sem is None:
                sem = asyncio.BoundedSemaphore(self._settings.max_sessions_per_server)
                self._semaphores[slug] = sem
            return sem

    async def _establish(self, descriptor: ServerDescriptor) -> asyncssh.SSHClientConnection:
        """建连任务主体：建立连接并登记为存活。

        失败时清除进行中标记，不留下任何条目。如果建连期间该条目
        已被 release，则关闭新连接并以 ConnectFailureError 通知等待者。
        """
        slug = descriptor.slug
        task = asyncio.current_task()
        try:
            conn = await self._connect(descriptor)
        except BaseException:
            if self._pending.get(slug) is task:
                del self._pending[slug]
            raise

        if self._pending.get(slug) is not task:
            await self._close_quietly(slug, conn)
            raise ConnectFailureError(
                f"服务器 {slug} 的连接在建立过程中被释放",
                server_slug=slug,
            )

        del self._pending[slug]
        self._live[slug] = conn
        logger.info("已连接服务器 {} ({}@{}:{})", slug, descriptor.username, descriptor.host, descriptor.port)
        return conn

    async def _connect(self, descriptor: ServerDescriptor) -> asyncssh.SSHClientConnection:
        """创建新的SSH连接。

        先解析凭据（不涉及网络），再以描述符的超时时间为上限完成握手。
        该超时独立于 asyncssh 自身的超时设置。

        Args:
            descriptor: 服务器描述符

        Returns:
            新建立的SSH连接

        Raises:
            AuthConfigError: 未配置可用凭据
            CredentialLoadError: 私钥读取或解码失败
            ConnectTimeoutError: 握手超时
            ConnectFailureError: 其他连接失败
        """
        slug = descriptor.slug
        client_auth = self._auth.resolve(descriptor)

        def client_factory() -> _EvictingClient:
            return _EvictingClient(lambda conn, exc: self._on_connection_lost(slug, conn, exc))

        options: dict[str, Any] = {
            "host": descriptor.host,
            "port": descriptor.port,
            "client_factory": client_factory,
            **client_auth.connect_options(),
        }
        if self._settings.known_hosts_policy == "ignore":
            options["known_hosts"] = None

        logger.debug(
            "正在连接服务器 {} ({}@{}:{}, 认证方式: {})",
            slug,
            descriptor.username,
            descriptor.host,
            descriptor.port,
            client_auth.auth_mode,
        )
        try:
            return await asyncio.wait_for(
                asyncssh.connect(**options),
                timeout=descriptor.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ConnectTimeoutError(
                f"SSH连接超时（{descriptor.timeout_ms}ms）: {descriptor.host}:{descriptor.port}",
                server_slug=slug,
                timeout_seconds=descriptor.timeout_seconds,
                cause=exc,
            ) from exc
        except Exception as exc:
            raise ConnectFailureError(
                f"SSH连接失败: {descriptor.host}:{descriptor.port} - {exc}",
                server_slug=slug,
                cause=exc,
                details={"host": descriptor.host, "port": descriptor.port},
            ) from exc

    def _on_connection_lost(
        self,
        slug: str,
        conn: asyncssh.SSHClientConnection,
        exc: Exception | None,
    ) -> None:
        if self._live.get(slug) is not conn:
            return
        del self._live[slug]
        if exc is None:
            logger.info("服务器 {} 的连接已关闭，已从连接池移除", slug)
        else:
            logger.warning("服务器 {} 的连接已断开，已从连接池移除: {}", slug, exc)

    def _close_in_background(self, slug: str, conn: asyncssh.SSHClientConnection) -> None:
        task = asyncio.get_running_loop().create_task(self._close_quietly(slug, conn))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @staticmethod
    def _is_connection_dead(conn: asyncssh.SSHClientConnection) -> bool:
        """检查连接是否已在本地被标记为关闭。

        Args:
            conn: SSH连接

        Returns:
            连接是否已关闭或不可用
        """
        try:
            if hasattr(conn, "is_closed"):
                return bool(conn.is_closed())
        except Exception:
            return True
        return False

    async def _close_quietly(self, slug: str, conn: asyncssh.SSHClientConnection) -> None:
        """关闭连接，异常只记录日志不向上抛出。

        Args:
            slug: 服务器标识
            conn: 要关闭的SSH连接
        """
        try:
            conn.close()
            await asyncio.wait_for(
                conn.wait_closed(),
                timeout=self._settings.shutdown_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("关闭服务器 {} 的连接时出错（已忽略）: {!r}", slug, exc)
