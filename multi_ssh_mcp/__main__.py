from multi_ssh_mcp.config_manager import ConfigManager
from multi_ssh_mcp.logger import setup_logger
from multi_ssh_mcp.mcp_server import create_mcp_server, run_stdio_server


def main() -> int:
    """
    Multi SSH MCP 服务器主入口

    配置错误（服务器列表为空、标识重复、凭据缺失）在启动阶段直接失败。
    """
    # 1. 加载配置
    config_manager = ConfigManager.load()

    # 2. 设置日志
    setup_logger(config_manager.settings)

    # 3. 创建 MCP 服务器
    server = create_mcp_server(
        settings=config_manager.settings,
        registry=config_manager.build_registry(),
    )

    # 4. stdio 启动
    run_stdio_server(server)

    return 0


if __name__ == "__main__":
    import sys

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n服务器已停止", file=sys.stderr)
        sys.exit(0)
    except Exception as e:
        print(f"启动失败: {e}", file=sys.stderr)
        sys.exit(1)
