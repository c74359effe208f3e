import logging

import pytest

from sandbox_core.telemetry.log import (
    ColoredFormatter,
    bound_logging_vars,
    get_logging_contextvars,
)
from sandbox_core.telemetry.otel import safe_otel_operation, sandbox_span
from sandbox_core.util.ids import track_process


def test_bound_vars_are_appended_to_text_logs():
    formatter = ColoredFormatter("%(levelname)s - %(message)s")
    record = logging.LogRecord("sandbox-core", logging.INFO, "", 0, "hello", None, None)

    with bound_logging_vars(sandbox_id="sb-1"):
        formatted = formatter.format(record)

    assert "hello" in formatted
    assert formatted.endswith("[sandbox_id=sb-1]")
    assert record.levelname == "INFO"


@pytest.mark.asyncio
async def test_track_process_binds_and_releases_vars():
    seen = {}

    @track_process
    async def work():
        seen.update(get_logging_contextvars())
        return "done"

    assert await work() == "done"
    assert seen["func_name"] == "work"
    assert "temp_id" in seen
    assert "func_name" not in get_logging_contextvars()


def test_sandbox_span_reraises():
    with pytest.raises(RuntimeError):
        with sandbox_span("kill", id="sb-1", template=None):
            raise RuntimeError("boom")


def test_safe_otel_operation_swallows_setup_errors():
    @safe_otel_operation("setup")
    def broken():
        raise RuntimeError("collector unreachable")

    assert broken() is None


def test_tracing_stays_off_when_disabled():
    from sandbox_core.schema.config import CoreConfig
    from sandbox_core.telemetry.otel import enable_tracing

    assert enable_tracing(CoreConfig(otel_enabled=False)) is None


def test_provider_needs_an_endpoint():
    from sandbox_core.schema.config import CoreConfig
    from sandbox_core.telemetry.otel import build_tracer_provider

    assert build_tracer_provider(CoreConfig(otel_exporter_otlp_endpoint="")) is None
