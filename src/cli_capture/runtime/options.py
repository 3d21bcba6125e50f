"""Capture and passthrough options.

Two layers are provided:

- ``PassthroughOptions`` / ``CaptureOptions`` / ``OutputOptions``: bit flags
  with stable raw values (passthrough out=1, err=2; capture out=4, err=8)
  for callers that store or transmit options as integers.
- ``CapturePolicy``: the immutable four-boolean view consumed by the
  runtime. Convert with ``CapturePolicy.from_options`` / ``to_options``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import ClassVar, Union

from .events import Stream

__all__ = [
    "PassthroughOptions",
    "CaptureOptions",
    "OutputOptions",
    "CapturePolicy",
    "PolicyLike",
]

PASSTHROUGH_MASK = 0x03
CAPTURE_MASK = 0x0C
OUTPUT_MASK = PASSTHROUGH_MASK | CAPTURE_MASK


def _describe_pair(value: int, out_bit: int, err_bit: int) -> str:
    if value & out_bit and value & err_bit:
        return "all"
    if value & out_bit:
        return "out"
    if value & err_bit:
        return "err"
    return "none"


class PassthroughOptions(IntFlag):
    """Which child streams are forwarded live to our own stdout/stderr."""

    NONE = 0
    OUT = 1 << 0
    ERR = 1 << 1
    ALL = OUT | ERR

    @classmethod
    def from_raw(cls, raw: int) -> "PassthroughOptions":
        return cls(raw & PASSTHROUGH_MASK)

    def __add__(self, other: int) -> Union["PassthroughOptions", "OutputOptions"]:
        if isinstance(other, PassthroughOptions):
            return PassthroughOptions(int(self) | int(other))
        return OutputOptions.from_raw(int(self) | int(other))

    __radd__ = __add__

    def __str__(self) -> str:
        return f"[{_describe_pair(int(self), 1 << 0, 1 << 1)}]"


class CaptureOptions(IntFlag):
    """Which child streams are accumulated into memory."""

    NONE = 0
    OUT = 1 << 2
    ERR = 1 << 3
    ALL = OUT | ERR

    @classmethod
    def from_raw(cls, raw: int) -> "CaptureOptions":
        return cls(raw & CAPTURE_MASK)

    def __add__(self, other: int) -> Union["CaptureOptions", "OutputOptions"]:
        if isinstance(other, CaptureOptions):
            return CaptureOptions(int(self) | int(other))
        return OutputOptions.from_raw(int(self) | int(other))

    __radd__ = __add__

    def __str__(self) -> str:
        return f"[{_describe_pair(int(self), 1 << 2, 1 << 3)}]"


class OutputOptions(IntFlag):
    """Combined capture and passthrough flags."""

    NONE = 0
    PASSTHROUGH_OUT = PassthroughOptions.OUT.value
    PASSTHROUGH_ERR = PassthroughOptions.ERR.value
    PASSTHROUGH_ALL = PassthroughOptions.ALL.value
    CAPTURE_OUT = CaptureOptions.OUT.value
    CAPTURE_ERR = CaptureOptions.ERR.value
    CAPTURE_ALL = CaptureOptions.ALL.value
    ALL = OUTPUT_MASK

    @classmethod
    def from_raw(cls, raw: int) -> "OutputOptions":
        return cls(raw & OUTPUT_MASK)

    @property
    def capture(self) -> CaptureOptions:
        return CaptureOptions.from_raw(int(self))

    @property
    def passthrough(self) -> PassthroughOptions:
        return PassthroughOptions.from_raw(int(self))

    def __add__(self, other: int) -> "OutputOptions":
        return OutputOptions.from_raw(int(self) | int(other))

    __radd__ = __add__

    def __str__(self) -> str:
        value = int(self)
        if value & OUTPUT_MASK == OUTPUT_MASK:
            return "[all]"
        if value == 0:
            return "[none]"
        text = ""
        if self.passthrough:
            text += "passthrough" + str(self.passthrough)[1:-1].capitalize()
        if self.capture:
            text += "capture" + str(self.capture)[1:-1].capitalize()
        return f"[{text}]"


@dataclass(frozen=True)
class CapturePolicy:
    """Immutable capture/passthrough policy for one execution.

    All four flags are independent: a stream may be captured, passed
    through, both or neither.

    Attributes:
        capture_out: Accumulate child stdout
        capture_err: Accumulate child stderr
        passthrough_out: Forward child stdout to our stdout
        passthrough_err: Forward child stderr to our stderr
    """

    capture_out: bool = False
    capture_err: bool = False
    passthrough_out: bool = False
    passthrough_err: bool = False

    NONE: ClassVar["CapturePolicy"]
    CAPTURE_OUT: ClassVar["CapturePolicy"]
    CAPTURE_ERR: ClassVar["CapturePolicy"]
    CAPTURE_ALL: ClassVar["CapturePolicy"]
    PASSTHROUGH_OUT: ClassVar["CapturePolicy"]
    PASSTHROUGH_ERR: ClassVar["CapturePolicy"]
    PASSTHROUGH_ALL: ClassVar["CapturePolicy"]
    ALL: ClassVar["CapturePolicy"]

    @classmethod
    def from_options(cls, options: int) -> "CapturePolicy":
        """Build a policy from any of the option flag types or a raw int."""
        raw = int(options)
        return cls(
            capture_out=bool(raw & CaptureOptions.OUT),
            capture_err=bool(raw & CaptureOptions.ERR),
            passthrough_out=bool(raw & PassthroughOptions.OUT),
            passthrough_err=bool(raw & PassthroughOptions.ERR),
        )

    @classmethod
    def coerce(cls, value: "PolicyLike") -> "CapturePolicy":
        if isinstance(value, CapturePolicy):
            return value
        return cls.from_options(value)

    def to_options(self) -> OutputOptions:
        raw = 0
        if self.capture_out:
            raw |= CaptureOptions.OUT
        if self.capture_err:
            raw |= CaptureOptions.ERR
        if self.passthrough_out:
            raw |= PassthroughOptions.OUT
        if self.passthrough_err:
            raw |= PassthroughOptions.ERR
        return OutputOptions.from_raw(raw)

    def captures(self, stream: Stream) -> bool:
        return self.capture_out if stream is Stream.OUT else self.capture_err

    def passes_through(self, stream: Stream) -> bool:
        return self.passthrough_out if stream is Stream.OUT else self.passthrough_err

    def needs_pipe(self, stream: Stream) -> bool:
        """Whether the stream has to be read at all."""
        return self.captures(stream) or self.passes_through(stream)

    @property
    def captures_all(self) -> bool:
        return self.capture_out and self.capture_err

    @property
    def captures_any(self) -> bool:
        return self.capture_out or self.capture_err

    def without_capture(self) -> "CapturePolicy":
        return CapturePolicy(
            passthrough_out=self.passthrough_out,
            passthrough_err=self.passthrough_err,
        )

    def __or__(self, other: "PolicyLike") -> "CapturePolicy":
        other = CapturePolicy.coerce(other)
        return CapturePolicy(
            capture_out=self.capture_out or other.capture_out,
            capture_err=self.capture_err or other.capture_err,
            passthrough_out=self.passthrough_out or other.passthrough_out,
            passthrough_err=self.passthrough_err or other.passthrough_err,
        )

    __add__ = __or__

    def __str__(self) -> str:
        return str(self.to_options())


CapturePolicy.NONE = CapturePolicy()
CapturePolicy.CAPTURE_OUT = CapturePolicy(capture_out=True)
CapturePolicy.CAPTURE_ERR = CapturePolicy(capture_err=True)
CapturePolicy.CAPTURE_ALL = CapturePolicy(capture_out=True, capture_err=True)
CapturePolicy.PASSTHROUGH_OUT = CapturePolicy(passthrough_out=True)
CapturePolicy.PASSTHROUGH_ERR = CapturePolicy(passthrough_err=True)
CapturePolicy.PASSTHROUGH_ALL = CapturePolicy(passthrough_out=True, passthrough_err=True)
CapturePolicy.ALL = CapturePolicy(True, True, True, True)

PolicyLike = Union[CapturePolicy, OutputOptions, CaptureOptions, PassthroughOptions, int]
