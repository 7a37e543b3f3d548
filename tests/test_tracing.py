"""
Tracing Tests
=============
Provider installation when enabled and best-effort span attributes.
"""

from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

import querychain.tracing as tracing
from querychain.config import TRACING


@pytest.fixture
def fresh_tracing(monkeypatch):
    monkeypatch.setattr(tracing, "_initialized", False)


class TestInitTracing:
    @pytest.mark.unit
    @patch("querychain.tracing.atexit")
    @patch("querychain.tracing.TracerProvider")
    @patch("querychain.tracing.OTLPSpanExporter")
    @patch("querychain.tracing.BatchSpanProcessor")
    @patch("querychain.tracing.trace")
    @patch("querychain.tracing.HTTPXClientInstrumentor")
    def test_enabled_installs_exporter_once(
        self, mock_httpx, mock_trace, mock_processor, mock_exporter, mock_provider, mock_atexit, fresh_tracing
    ):
        with patch.object(tracing, "TRACING", replace(TRACING, ENABLED=True, OTLP_ENDPOINT="http://collector:4318")):
            tracing.init_tracing()
            tracing.init_tracing()

        mock_exporter.assert_called_once_with(endpoint="http://collector:4318")
        mock_trace.set_tracer_provider.assert_called_once_with(mock_provider.return_value)
        mock_httpx.return_value.instrument.assert_called_once()
        mock_atexit.register.assert_called_once_with(mock_provider.return_value.shutdown)

    @pytest.mark.unit
    @patch("querychain.tracing.TracerProvider")
    @patch("querychain.tracing.trace")
    def test_disabled_keeps_noop_provider(self, mock_trace, mock_provider, fresh_tracing):
        with patch.object(tracing, "TRACING", replace(TRACING, ENABLED=False)):
            tracing.init_tracing()

        mock_provider.assert_not_called()
        mock_trace.set_tracer_provider.assert_not_called()

    @pytest.mark.unit
    @patch("querychain.tracing.trace")
    def test_get_tracer_by_name(self, mock_trace):
        assert tracing.get_tracer("querychain.chain") is mock_trace.get_tracer.return_value
        mock_trace.get_tracer.assert_called_once_with("querychain.chain")


class TestSafeSetSpanAttributes:
    @pytest.mark.unit
    def test_coerces_values(self):
        span = MagicMock()
        tracing.safe_set_span_attributes(
            span,
            {
                "s": "x" * 5000,
                "b": True,
                "l": list(range(40)),
                "d": {"k": 1, "a": [2]},
                "n": None,
                "": "skipped",
            },
        )

        calls = {c.args[0]: c.args[1] for c in span.set_attribute.call_args_list}
        assert len(calls["s"]) == tracing.MAX_TEXT_LENGTH
        assert calls["b"] is True
        assert calls["l"] == [str(i) for i in range(tracing.MAX_LIST_ITEMS)]
        assert calls["d"] == '{"a": [2], "k": 1}'
        assert "n" not in calls
        assert "" not in calls

    @pytest.mark.unit
    def test_none_span_is_ignored(self):
        tracing.safe_set_span_attributes(None, {"a": 1})

    @pytest.mark.unit
    def test_setter_errors_do_not_stop_other_attributes(self):
        span = MagicMock()
        span.set_attribute.side_effect = RuntimeError("exporter down")

        tracing.safe_set_span_attributes(span, {"a": 1, "b": "two"})

        assert span.set_attribute.call_count == 2
