"""Multi SSH MCP Server 模块

本模块基于 MCP (Model Context Protocol) 暴露一组预先配置的SSH服务器，
供 Agent 按需执行命令。提供以下工具：
- list_ssh_servers: 列出已配置的服务器，标出默认服务器
- execute_ssh_command: 在指定（或默认）服务器上执行命令

连接在首次使用时建立并被复用，服务器退出时统一关闭。

使用方式：
    通过 stdio 启动 MCP 服务器，供 Claude Desktop 等客户端调用。
"""
from __future__ import annotations

import sys
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from io import TextIOWrapper
from pathlib import Path
from tempfile import gettempdir
from typing import Any, Literal, cast

import anyio
from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.stdio import stdio_server

from multi_ssh_mcp.command_executor import CommandExecutor, CommandResult
from multi_ssh_mcp.connection_pool import ConnectionPool
from multi_ssh_mcp.exceptions import SSHError
from multi_ssh_mcp.server_registry import ServerRegistry
from multi_ssh_mcp.settings import SSHMCPSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def format_command_result(result: CommandResult) -> str:
    response = f"Command executed on server: {result.server_slug}\n"
    response += f"Exit code: {result.exit_code}\n\n"

    if result.stdout:
        response += f"=== STDOUT ===\n{result.stdout}\n"
    if result.stderr:
        response += f"\n=== STDERR ===\n{result.stderr}\n"
    if not result.stdout and not result.stderr:
        response += "(No output)\n"
    return response


def format_server_list(servers: list[dict[str, Any]]) -> str:
    lines = [f"  - {s['slug']}{' (default)' if s['default'] else ''}" for s in servers]
    return "Configured SSH Servers:\n\n" + "\n".join(lines)


def run_stdio_server(server: FastMCP) -> None:
    async def _run() -> None:
        stdin = anyio.wrap_file(
            TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
        )
        stdout = anyio.wrap_file(
            TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        )
        async with stdio_server(stdin=stdin, stdout=stdout) as (read_stream, write_stream):
            lowlevel = cast(Any, server)._mcp_server
            await lowlevel.run(
                read_stream,
                write_stream,
                lowlevel.create_initialization_options(),
            )

    try:
        anyio.run(_run)
    except BaseException:
        error_path = Path(gettempdir()) / "multi-ssh-mcp-startup-error.log"
        with error_path.open("a", encoding="utf-8") as f:
            f.write("\n" + "=" * 80 + "\n")
            f.write(traceback.format_exc())
        raise


def create_mcp_server(
    *,
    settings: SSHMCPSettings,
    registry: ServerRegistry | None = None,
) -> FastMCP:
    """创建 MCP 服务器并注册工具。

    Args:
        settings: SSH MCP配置
        registry: 服务器注册表，None 时从 settings.servers 构造

    Raises:
        ConfigError: 服务器列表为空或标识重复
    """
    registry = registry or ServerRegistry.from_settings(settings)
    pool = ConnectionPool(registry=registry, settings=settings)
    executor = CommandExecutor(registry=registry, pool=pool, settings=settings)

    @asynccontextmanager
    async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
        logger.info(
            "已配置服务器: {}，默认服务器: {}",
            ", ".join(registry.all_slugs()),
            registry.default_slug,
        )
        try:
            yield
        finally:
            await executor.close()

    mcp = FastMCP(
        name="multi-ssh-mcp",
        instructions="在预先配置的多台SSH服务器上执行命令",
        log_level=cast(LogLevel, settings.log_level),
        lifespan=lifespan,
    )

    slugs = ", ".join(registry.all_slugs())
    default_slug = registry.default_slug

    @mcp.tool(
        description=(
            f"Execute a bash command on a remote SSH server. "
            f"Available servers: {slugs}. Default server: {default_slug}"
        )
    )
    async def execute_ssh_command(*, command: str, server: str | None = None) -> str:
        """执行单条SSH命令。

        Args:
            command: 要在远程服务器上执行的bash命令
            server: 服务器标识（可选），默认使用第一台配置的服务器

        Returns:
            str: 包含服务器、退出码、STDOUT、STDERR的文本
        """
        if not command or not command.strip():
            raise ToolError("Command is required and must be a string")
        try:
            result = await executor.execute(command, server)
        except SSHError as exc:
            logger.warning(exc.render())
            raise ToolError(exc.render()) from exc
        return format_command_result(result)

    @mcp.tool(description="List all configured SSH servers with their slugs")
    def list_ssh_servers() -> str:
        """列出所有已配置的服务器，默认服务器带 (default) 标记。"""
        return format_server_list(executor.list_servers())

    return mcp
