"""Capture/passthrough option tests.

Test coverage:
- Raw flag values and masking
- ``+`` combination across option types
- Textual descriptions
- CapturePolicy constants and conversions
"""

from __future__ import annotations

import itertools

import pytest

from cli_capture.runtime.events import Stream
from cli_capture.runtime.options import (
    CaptureOptions,
    CapturePolicy,
    OutputOptions,
    PassthroughOptions,
)


class TestOptionFlags:
    """Test bit flag option types."""

    def test_raw_values(self):
        assert PassthroughOptions.OUT == 1
        assert PassthroughOptions.ERR == 2
        assert CaptureOptions.OUT == 4
        assert CaptureOptions.ERR == 8
        assert OutputOptions.ALL == 0x0F

    def test_from_raw_masks_foreign_bits(self):
        assert PassthroughOptions.from_raw(0xFF) == PassthroughOptions.ALL
        assert CaptureOptions.from_raw(0xFF) == CaptureOptions.ALL
        assert OutputOptions.from_raw(0xF3) == OutputOptions.PASSTHROUGH_ALL
        assert CaptureOptions.from_raw(PassthroughOptions.ALL) == CaptureOptions.NONE

    def test_add_same_type(self):
        combined = PassthroughOptions.OUT + PassthroughOptions.ERR
        assert isinstance(combined, PassthroughOptions)
        assert combined == PassthroughOptions.ALL

    def test_add_mixed_types_gives_output_options(self):
        combined = PassthroughOptions.OUT + CaptureOptions.ERR
        assert isinstance(combined, OutputOptions)
        assert combined == OutputOptions.PASSTHROUGH_OUT | OutputOptions.CAPTURE_ERR

    def test_projections(self):
        options = OutputOptions.PASSTHROUGH_ERR | OutputOptions.CAPTURE_OUT
        assert options.capture == CaptureOptions.OUT
        assert options.passthrough == PassthroughOptions.ERR

    @pytest.mark.parametrize(
        "options,expected",
        [
            (OutputOptions.ALL, "[all]"),
            (OutputOptions.NONE, "[none]"),
            (OutputOptions.PASSTHROUGH_OUT | OutputOptions.CAPTURE_ERR, "[passthroughOutcaptureErr]"),
            (OutputOptions.CAPTURE_ALL, "[captureAll]"),
            (OutputOptions.PASSTHROUGH_ALL | OutputOptions.CAPTURE_OUT, "[passthroughAllcaptureOut]"),
        ],
    )
    def test_output_description(self, options: OutputOptions, expected: str):
        assert str(options) == expected

    def test_pair_descriptions(self):
        assert str(PassthroughOptions.ALL) == "[all]"
        assert str(PassthroughOptions.NONE) == "[none]"
        assert str(CaptureOptions.ERR) == "[err]"


class TestCapturePolicy:
    """Test CapturePolicy."""

    def test_constants(self):
        assert CapturePolicy.NONE == CapturePolicy(False, False, False, False)
        assert CapturePolicy.CAPTURE_ALL == CapturePolicy(capture_out=True, capture_err=True)
        assert CapturePolicy.PASSTHROUGH_ALL == CapturePolicy(
            passthrough_out=True, passthrough_err=True
        )
        assert CapturePolicy.ALL == CapturePolicy(True, True, True, True)

    def test_all_sixteen_combinations_round_trip(self):
        seen = set()
        for flags in itertools.product((False, True), repeat=4):
            policy = CapturePolicy(*flags)
            assert CapturePolicy.from_options(policy.to_options()) == policy
            seen.add(int(policy.to_options()))
        assert seen == set(range(16))

    def test_combine_with_plus_and_or(self):
        assert CapturePolicy.CAPTURE_OUT + CapturePolicy.CAPTURE_ERR == CapturePolicy.CAPTURE_ALL
        assert CapturePolicy.CAPTURE_ALL | CapturePolicy.PASSTHROUGH_ALL == CapturePolicy.ALL

    def test_combine_with_flags(self):
        policy = CapturePolicy.CAPTURE_OUT | PassthroughOptions.ERR
        assert policy == CapturePolicy(capture_out=True, passthrough_err=True)

    def test_coerce(self):
        assert CapturePolicy.coerce(CapturePolicy.ALL) is CapturePolicy.ALL
        assert CapturePolicy.coerce(CaptureOptions.ALL) == CapturePolicy.CAPTURE_ALL
        assert CapturePolicy.coerce(0x0F) == CapturePolicy.ALL

    def test_stream_queries(self):
        policy = CapturePolicy(capture_out=True, passthrough_err=True)
        assert policy.captures(Stream.OUT)
        assert not policy.captures(Stream.ERR)
        assert not policy.passes_through(Stream.OUT)
        assert policy.passes_through(Stream.ERR)
        assert policy.needs_pipe(Stream.OUT)
        assert policy.needs_pipe(Stream.ERR)
        assert not CapturePolicy.NONE.needs_pipe(Stream.OUT)

    def test_without_capture(self):
        assert CapturePolicy.ALL.without_capture() == CapturePolicy.PASSTHROUGH_ALL
        assert CapturePolicy.CAPTURE_ALL.without_capture() == CapturePolicy.NONE

    def test_frozen(self):
        with pytest.raises(AttributeError):
            CapturePolicy.NONE.capture_out = True  # type: ignore

    def test_str(self):
        assert str(CapturePolicy.ALL) == "[all]"
        assert str(CapturePolicy(capture_err=True, passthrough_out=True)) == "[passthroughOutcaptureErr]"
