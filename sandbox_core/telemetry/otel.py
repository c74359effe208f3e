"""
Tracing for sandbox operations, exported over OTLP when enabled.
"""

from contextlib import contextmanager
from functools import wraps
from typing import Callable, Iterator, Optional

from opentelemetry import trace, propagate
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from ..env import LOG
from ..schema.config import CoreConfig

TRACER = trace.get_tracer("sandbox_core")


def safe_otel_operation(stage: str):
    """Run a tracing hook without letting its failure reach the caller.

    The wrapped function returns None when it raises.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                LOG.warning(f"Tracing {stage} failed, running untraced: {e}")
                return None

        return wrapper

    return decorator


def build_tracer_provider(config: CoreConfig) -> Optional[TracerProvider]:
    if not config.otel_exporter_otlp_endpoint:
        return None

    ratio = config.otel_sample_ratio
    if not 0 < ratio <= 1:
        ratio = 1.0
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": config.otel_service_name,
                "service.version": config.otel_service_version,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(ratio)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=config.otel_exporter_otlp_endpoint, insecure=True)
        )
    )
    return provider


@safe_otel_operation("setup")
def enable_tracing(config: CoreConfig, app=None) -> Optional[TracerProvider]:
    """Install the global tracer provider and instrument `app` if given."""
    if not config.otel_enabled:
        return None
    provider = build_tracer_provider(config)
    if provider is None:
        return None

    trace.set_tracer_provider(provider)
    propagate.set_global_textmap(
        CompositePropagator([TraceContextTextMapPropagator(), W3CBaggagePropagator()])
    )
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
    return provider


@safe_otel_operation("shutdown")
def disable_tracing() -> None:
    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.shutdown()


@contextmanager
def sandbox_span(operation: str, **attributes) -> Iterator[trace.Span]:
    """Wrap a remote sandbox operation in a client span.

    Exceptions are recorded on the span and re-raised.
    """
    with TRACER.start_as_current_span(
        f"sandbox.{operation}",
        kind=trace.SpanKind.CLIENT,
        attributes={
            f"sandbox.{k}": v for k, v in attributes.items() if v is not None
        },
    ) as span:
        yield span
