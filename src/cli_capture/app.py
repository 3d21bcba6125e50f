"""cli-capture 命令行入口。

运行一个命令，按参数捕获/透传其输出，可选输出 JSON 摘要，
并以子进程的退出码退出。
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from .config import get_config
from .errors import ProcessSpawnError, ProcessTimeoutError
from .runtime import (
    CaptureOptions,
    CapturePolicy,
    OutputOptions,
    PassthroughOptions,
    ProcessRunner,
    ProcessSpec,
)

__all__ = ["build_parser", "parse_policy", "run_command", "main"]

logger = logging.getLogger(__name__)

STREAM_CHOICES = ("none", "out", "err", "all")

# 与 shell 约定一致
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127
EXIT_SPAWN_FAILED = 126
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="cli-capture",
        description="Run a command, capturing and/or passing through its output.",
    )
    parser.add_argument(
        "--capture",
        choices=STREAM_CHOICES,
        default="none",
        help="streams to capture into memory (default: none)",
    )
    parser.add_argument(
        "--passthrough",
        choices=STREAM_CHOICES,
        default="all",
        help="streams to forward live (default: all)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="print a JSON summary of the captured output after the command exits",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="seconds before the command is terminated",
    )
    parser.add_argument("--cwd", default=None, help="working directory for the command")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run, after --")
    return parser


def parse_policy(capture: str, passthrough: str) -> CapturePolicy:
    """将 --capture/--passthrough 参数转换为 CapturePolicy。

    Args:
        capture: none/out/err/all
        passthrough: none/out/err/all

    Returns:
        对应的捕获策略
    """
    capture_flags = {
        "none": CaptureOptions.NONE,
        "out": CaptureOptions.OUT,
        "err": CaptureOptions.ERR,
        "all": CaptureOptions.ALL,
    }[capture]
    passthrough_flags = {
        "none": PassthroughOptions.NONE,
        "out": PassthroughOptions.OUT,
        "err": PassthroughOptions.ERR,
        "all": PassthroughOptions.ALL,
    }[passthrough]
    return CapturePolicy.from_options(OutputOptions.from_raw(capture_flags | passthrough_flags))


def _exit_code(status: int) -> int:
    """子进程退出状态转换为本进程退出码（被信号终止时为 128 + 信号值）。"""
    if status < 0:
        return 128 + (-status)
    return status & 0xFF


def run_command(args: argparse.Namespace, runner: ProcessRunner | None = None) -> int:
    """执行解析后的命令。

    Args:
        args: build_parser() 解析结果
        runner: 可选的 ProcessRunner（测试时注入缓冲输出）

    Returns:
        本进程应使用的退出码
    """
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        logger.error("No command given")
        return EXIT_USAGE

    runner = runner or ProcessRunner()
    policy = parse_policy(args.capture, args.passthrough)
    spec = ProcessSpec(argv=command, cwd=args.cwd)
    logger.debug(f"Running {command[0]} policy={policy} timeout={args.timeout}")

    try:
        response = runner.execute_string(spec, policy, timeout=args.timeout)
    except ProcessSpawnError as e:
        runner.print_error(f"cli-capture: {e}")
        return EXIT_NOT_FOUND if isinstance(e.cause, FileNotFoundError) else EXIT_SPAWN_FAILED
    except ProcessTimeoutError as e:
        runner.print_error(f"cli-capture: {e}")
        return EXIT_TIMEOUT

    if args.json:
        runner.print(json.dumps(response.to_dict(), ensure_ascii=False))

    return _exit_code(response.exit_status_code)


def _configure_logging() -> None:
    """配置日志输出。"""
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 cli_capture 命名空间启用详细日志
    logging.getLogger("cli_capture").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    _configure_logging()
    args = build_parser().parse_args(argv)
    sys.exit(run_command(args))


if __name__ == "__main__":
    main()
