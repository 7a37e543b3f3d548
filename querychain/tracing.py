"""
Chain run tracing
=================
OpenTelemetry spans for chain runs: a `chain_run` span, one `chain_item` span
per item and one `step:<name>` span per step, with GitHub API requests as
children of the step that made them.

Export is enabled with ENABLE_TRACING=true and goes to OTLP_ENDPOINT over
HTTP. Without it the global no-op tracer is used and every helper here is
harmless to call.
"""

import atexit
import json
from typing import Any, Mapping, Optional

from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from querychain.config import TRACING

MAX_TEXT_LENGTH = 2048
MAX_LIST_ITEMS = 25
MAX_LIST_ITEM_LENGTH = 256

_initialized = False


def _export_spans() -> None:
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: TRACING.SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=TRACING.OTLP_ENDPOINT)))
    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument()
    # flush spans still batched when the process exits
    atexit.register(provider.shutdown)
    logger.info(f"Exporting chain traces to {TRACING.OTLP_ENDPOINT} as {TRACING.SERVICE_NAME}")


def init_tracing() -> None:
    """Install the exporting tracer provider once, when tracing is enabled."""
    global _initialized
    if _initialized:
        return
    _initialized = True
    if TRACING.ENABLED:
        _export_spans()


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def _span_value(value: Any) -> Optional[Any]:
    """Coerce a value to something a span attribute accepts; None drops it."""
    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value[:MAX_TEXT_LENGTH]
    if isinstance(value, (list, tuple)):
        return [str(v)[:MAX_LIST_ITEM_LENGTH] for v in list(value)[:MAX_LIST_ITEMS]]
    if isinstance(value, dict):
        try:
            return json.dumps(value, sort_keys=True, default=str)[:MAX_TEXT_LENGTH]
        except (TypeError, ValueError):
            pass
    return str(value)[:MAX_TEXT_LENGTH]


def safe_set_span_attributes(span: Any, attributes: Mapping[str, Any]) -> None:
    """Set attributes on `span`, skipping empty keys and None values.

    A failing setter is logged and never interrupts the chain run.
    """
    setter = getattr(span, "set_attribute", None)
    if not callable(setter):
        return

    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            continue
        coerced = _span_value(value)
        if coerced is None:
            continue
        try:
            setter(key, coerced)
        except Exception as e:
            logger.debug(f"Span attribute {key} not set: {type(e).__name__}: {e}")
