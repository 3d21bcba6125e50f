"""Typed results of a captured execution.

``assemble`` reduces an exit status, a policy and the delivered events
into a ``CapturedResponse``; ``to_string_response`` derives the decoded
``StringResponse`` from it.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .events import OutputEvent, Stream
from .options import CapturePolicy

__all__ = [
    "CapturedResponse",
    "StringResponse",
    "assemble",
    "to_string_response",
    "to_exit_status_code",
]

logger = logging.getLogger(__name__)

_INT32_MIN = -(1 << 31)
_UINT32 = 1 << 32


def to_exit_status_code(code: int) -> int:
    """Wrap an exit status into the signed 32-bit range."""
    code = int(code) % _UINT32
    return code - _UINT32 if code >= -_INT32_MIN else code


@dataclass(frozen=True)
class CapturedResponse:
    """Raw result of a captured execution.

    Attributes:
        exit_status_code: Child exit status (negative signal number when the
            child was killed by a signal on POSIX)
        captured_events: Events of captured streams, in delivery order
        policy: Policy the execution ran with
    """

    exit_status_code: int
    captured_events: tuple[OutputEvent, ...] = ()
    policy: CapturePolicy = field(default_factory=CapturePolicy)

    def _join(self, stream: Stream | None) -> bytes:
        return b"".join(
            bytes(e.data)
            for e in self.captured_events
            if stream is None or e.stream is stream
        )

    @property
    def out_bytes(self) -> bytes | None:
        """Captured stdout, or None if stdout was not captured."""
        return self._join(Stream.OUT) if self.policy.capture_out else None

    @property
    def err_bytes(self) -> bytes | None:
        """Captured stderr, or None if stderr was not captured."""
        return self._join(Stream.ERR) if self.policy.capture_err else None

    @property
    def output_bytes(self) -> bytes | None:
        """Both streams in delivery order, or None unless both are captured."""
        return self._join(None) if self.policy.captures_all else None

    @property
    def succeeded(self) -> bool:
        return self.exit_status_code == 0

    def with_container(self, container: Callable[[Any], Any]) -> "CapturedResponse":
        """Return a copy whose event data is re-wrapped by ``container``."""
        return CapturedResponse(
            exit_status_code=self.exit_status_code,
            captured_events=tuple(e.with_container(container) for e in self.captured_events),
            policy=self.policy,
        )

    def to_string_response(self) -> "StringResponse":
        return to_string_response(self)


@dataclass(frozen=True)
class StringResponse:
    """UTF-8 view of a captured execution.

    A field is None when its stream was not captured and ``""`` when it was
    captured but produced nothing. ``output`` is only set when both streams
    were captured.
    """

    exit_status_code: int
    out: str | None = None
    err: str | None = None
    output: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_status_code == 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"exit_status_code": self.exit_status_code}
        for name in ("out", "err", "output"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result


def assemble(
    exit_status_code: int,
    policy: CapturePolicy,
    events: Iterable[OutputEvent],
) -> CapturedResponse:
    """Build a ``CapturedResponse``.

    Events of streams the policy does not capture are dropped; the order of
    the remaining events is kept.
    """
    captured = tuple(e for e in events if e.matches_capture(policy))
    return CapturedResponse(
        exit_status_code=to_exit_status_code(exit_status_code),
        captured_events=captured,
        policy=policy,
    )


class _StreamDecoder:
    """Incremental UTF-8 decoder that drops undecodable chunks."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self.parts: list[str] = []

    def feed(self, data: bytes) -> str:
        try:
            text = self._decoder.decode(data)
        except UnicodeDecodeError as e:
            logger.debug(f"Dropping {len(data)} undecodable bytes: {e}")
            self._decoder.reset()
            return ""
        self.parts.append(text)
        return text

    def finish(self) -> str:
        try:
            tail = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            logger.debug(f"Dropping truncated trailing bytes: {e}")
            self._decoder.reset()
            return ""
        self.parts.append(tail)
        return tail

    @property
    def text(self) -> str:
        return "".join(self.parts)


def to_string_response(response: CapturedResponse) -> StringResponse:
    """Decode a ``CapturedResponse`` as UTF-8.

    Decoding is incremental per stream, so a multi-byte character split
    across two chunks of the same stream decodes correctly.
    """
    policy = response.policy
    decoders = {Stream.OUT: _StreamDecoder(), Stream.ERR: _StreamDecoder()}
    combined: list[str] = []

    for event in response.captured_events:
        combined.append(decoders[event.stream].feed(bytes(event.data)))
    for stream in (Stream.OUT, Stream.ERR):
        combined.append(decoders[stream].finish())

    return StringResponse(
        exit_status_code=response.exit_status_code,
        out=decoders[Stream.OUT].text if policy.capture_out else None,
        err=decoders[Stream.ERR].text if policy.capture_err else None,
        output="".join(combined) if policy.captures_all else None,
    )
