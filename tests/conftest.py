"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用子进程脚本
FAKE_CLI = Path(__file__).parent / "fixtures" / "fake_cli.py"


@pytest.fixture
def fake_argv():
    """构造运行 fake_cli.py 的命令行。

    用法: fake_argv("out=hello", "err=oops", "--exit-code", "3")
    """

    def _build(*args: str) -> list[str]:
        return [sys.executable, str(FAKE_CLI), *args]

    return _build


@pytest.fixture(autouse=True)
def _clean_config(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用不受外部 CLC_* 环境变量影响的配置。"""
    from cli_capture.config import reload_config

    for name in ("CLC_CHUNK_SIZE", "CLC_STOP_ON_ERROR", "CLC_TERM_TIMEOUT",
                 "CLC_KILL_TIMEOUT", "CLC_LOG_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    reload_config()
