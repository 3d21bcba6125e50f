"""cli-capture - 子进程输出捕获与透传。

启动外部进程，将 stdout/stderr 两路输出合并为一个有序、线程安全的事件序列，
每路输出可独立选择捕获（累积到内存）和透传（实时转发到本进程的输出）。

环境变量:
    CLC_CHUNK_SIZE: 每次读取的最大字节数 (默认 3072)
    CLC_STOP_ON_ERROR: 读取出错时停止该流 (默认 true)
    CLC_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    cli-capture --capture all -- git --version
"""

__version__ = "0.1.0"

from .app import main
from .errors import CaptureError, ProcessSpawnError, ProcessTimeoutError, ReaderStateError
from .runtime import (
    CapturedProcess,
    CapturedResponse,
    CaptureOptions,
    CapturePolicy,
    OutputEvent,
    OutputOptions,
    PassthroughOptions,
    ProcessRunner,
    ProcessSpec,
    Stream,
    StringResponse,
)

__all__ = [
    "__version__",
    "main",
    "CaptureError",
    "CaptureOptions",
    "CapturePolicy",
    "CapturedProcess",
    "CapturedResponse",
    "OutputEvent",
    "OutputOptions",
    "PassthroughOptions",
    "ProcessRunner",
    "ProcessSpawnError",
    "ProcessSpec",
    "ProcessTimeoutError",
    "ReaderStateError",
    "Stream",
    "StringResponse",
]
