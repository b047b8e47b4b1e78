"""
Multi SSH MCP 远程命令执行工具

基于 MCP 协议，为一组预先配置的 SSH 服务器维护可复用的连接并按需执行命令。
"""

__version__ = "0.1.0"

__all__ = [
    "auth_manager",
    "command_executor",
    "config_manager",
    "connection_pool",
    "exceptions",
    "logger",
    "mcp_server",
    "server_registry",
    "settings",
]
