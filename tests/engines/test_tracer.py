"""
Tests for the engine tracer.

Covers:
- Fingerprints are stable across call styles and Decimal representations
- STOCK_ENGINE_TRACE is emitted with engine name and version
- The wrapped function's result is returned unchanged
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

from stock_engines.conversion import net_weight
from stock_engines.tracer import compute_input_fingerprint, traced_engine
from stock_kernel.logging_config import StructuredFormatter, configure_logging


def _capture() -> StringIO:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler)
    return stream


def _traces(stream: StringIO) -> list[dict]:
    lines = [json.loads(line) for line in stream.getvalue().splitlines() if line]
    return [line for line in lines if line["message"] == "STOCK_ENGINE_TRACE"]


class TestFingerprint:
    def test_length_and_hex(self):
        fp = compute_input_fingerprint(("a",), {"a": Decimal("1")})

        assert len(fp) == 16
        int(fp, 16)

    def test_decimal_representation_does_not_matter(self):
        first = compute_input_fingerprint(("gross",), {"gross": Decimal("2350")})
        second = compute_input_fingerprint(("gross",), {"gross": Decimal("2350.000")})
        assert first == second

    def test_values_change_fingerprint(self):
        first = compute_input_fingerprint(("gross",), {"gross": Decimal("2350")})
        second = compute_input_fingerprint(("gross",), {"gross": Decimal("2351")})
        assert first != second

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("tapped",), {}) == compute_input_fingerprint(
            ("tapped",), {"tapped": None},
        )

    def test_dates_and_sequences(self):
        fp = compute_input_fingerprint(
            ("when", "weights"),
            {"when": date(2024, 6, 1), "weights": (Decimal("1"), Decimal("2"))},
        )
        assert len(fp) == 16


class TestTracedEngine:
    def test_trace_emitted(self):
        stream = _capture()

        result = net_weight(Decimal("2350"), Decimal("850"))

        assert result.raw == Decimal("1500")
        traces = _traces(stream)
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "conversion.net_weight"
        assert traces[0]["engine_version"] == "1.0"
        assert traces[0]["logger"] == "stock_kernel.engines.tracer"
        assert traces[0]["duration_ms"] >= 0

    def test_positional_and_keyword_calls_match(self):
        stream = _capture()

        net_weight(Decimal("2350"), Decimal("850"))
        net_weight(gross=Decimal("2350"), tare=Decimal("850"))

        first, second = _traces(stream)
        assert first["input_fingerprint"] == second["input_fingerprint"]

    def test_no_fingerprint_fields(self):
        stream = _capture()

        @traced_engine("test.engine", "2.1")
        def double(x):
            return x * 2

        assert double(21) == 42
        (trace,) = _traces(stream)
        assert trace["input_fingerprint"] == ""
        assert trace["engine_version"] == "2.1"

    def test_wraps_preserves_name(self):
        assert net_weight.__name__ == "net_weight"
