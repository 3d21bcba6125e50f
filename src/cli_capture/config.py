"""CLC 环境变量配置管理。

环境变量:
    CLC_CHUNK_SIZE: 每次读取的最大字节数
        - 默认 3072 (3 KiB)
        - 限制在 1 ~ 1048576 (1 MiB) 范围

    CLC_STOP_ON_ERROR: 读取出错时是否停止该流的读取
        - true/1/yes = 停止 (默认)
        - false/0/no = 上报错误后继续读取直到 EOF

    CLC_TERM_TIMEOUT: 发送 SIGTERM 后等待进程退出的时间（秒）
        - 默认 2.0 秒

    CLC_KILL_TIMEOUT: 发送 SIGKILL 后等待进程退出的时间（秒）
        - 默认 1.0 秒

    CLC_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_CHUNK_SIZE = 3 * 1024
MAX_CHUNK_SIZE = 1024 * 1024
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_chunk_size(value: str | None) -> int:
    """解析读取块大小环境变量。"""
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_CHUNK_SIZE
    return max(1, min(size, MAX_CHUNK_SIZE))


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间环境变量。"""
    if not value:
        return default
    try:
        timeout = float(value)
        return max(0.0, min(timeout, 60.0))  # 限制在 0-60 秒范围
    except ValueError:
        return default


@dataclass
class Config:
    """CLC 配置。

    Attributes:
        chunk_size: 每次读取的最大字节数
        stop_on_error: 读取出错时是否停止该流
        term_timeout: SIGTERM 后等待时间（秒）
        kill_timeout: SIGKILL 后等待时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    stop_on_error: bool = True
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(chunk_size={self.chunk_size}, "
            f"stop_on_error={self.stop_on_error}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "cli-capture"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"clc_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CLC_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        chunk_size=_parse_chunk_size(os.environ.get("CLC_CHUNK_SIZE")),
        stop_on_error=_parse_bool(os.environ.get("CLC_STOP_ON_ERROR"), default=True),
        term_timeout=_parse_timeout(
            os.environ.get("CLC_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("CLC_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
