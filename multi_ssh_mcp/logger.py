"""日志配置模块

stdout 是 MCP 协议通道，日志只写入文件；交互式终端下额外输出到 stderr。
所有日志消息在写入任何 sink 之前都会经过凭据脱敏。
"""
from __future__ import annotations

import re
import sys
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from loguru import logger

from multi_ssh_mcp.settings import SSHMCPSettings

# 形如 password=xxx / passphrase: xxx / private_key=xxx 的键值对
_SECRET_PATTERN = re.compile(
    r"(?i)\b(password|passwd|passphrase|private_?key|token)(\s*[:=]\s*)(\S+)"
)

_FALLBACK_LOG_DIR = "multi-ssh-mcp-logs"


def _redact(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1\2***", text)


def _redact_record(record: Any) -> None:
    record["message"] = _redact(record["message"])


def _resolve_log_dir(configured: Path) -> Path:
    """返回可写的日志目录，配置目录无法创建时退回系统临时目录。"""
    try:
        configured.mkdir(parents=True, exist_ok=True)
        return configured
    except OSError:
        fallback = Path(gettempdir()) / _FALLBACK_LOG_DIR
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def setup_logger(settings: SSHMCPSettings) -> Path:
    """按配置重建全局 loguru sink。

    Returns:
        Path: 实际使用的日志目录
    """
    log_dir = _resolve_log_dir(Path(settings.log_dir))

    logger.remove()
    logger.configure(patcher=_redact_record)

    common: dict[str, Any] = {"enqueue": True, "backtrace": False, "diagnose": False}

    if getattr(sys.stderr, "isatty", lambda: False)():
        logger.add(sys.stderr, level=settings.log_level, colorize=True, **common)

    file_options: dict[str, Any] = {
        "rotation": settings.log_rotation,
        "retention": settings.log_retention,
        "encoding": "utf-8",
        **common,
    }
    logger.add(str(log_dir / "app.log"), level=settings.log_level, **file_options)
    logger.add(str(log_dir / "error.log"), level="ERROR", **file_options)

    logger.debug("日志目录: {}", log_dir)
    return log_dir
