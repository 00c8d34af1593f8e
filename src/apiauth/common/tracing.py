"""OpenTelemetry tracing for authentication and signed client calls."""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

from apiauth import __version__
from apiauth.common.logging import get_logger
from apiauth.common.settings import Settings

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_SERVICE_NAME = "apiauth-server"

_tracer: trace.Tracer | None = None


def tracing_requested(settings: Settings) -> bool:
    """Whether any tracing option is switched on."""
    return bool(settings.tracing_enabled or settings.tracing_otlp_endpoint or settings.tracing_console)


def configure_tracing(settings: Settings) -> trace.Tracer | None:
    """
    Install a tracer provider from settings.

    Spans go to the OTLP collector at ``tracing_otlp_endpoint`` and/or the
    console. Returns None, leaving the no-op provider in place, when tracing
    is not requested.
    """
    global _tracer

    if not tracing_requested(settings):
        return None

    service_name = settings.tracing_service_name or DEFAULT_SERVICE_NAME
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    if settings.tracing_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.tracing_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    if settings.tracing_console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name)
    logger.info(
        "Tracing configured",
        service_name=service_name,
        otlp_endpoint=settings.tracing_otlp_endpoint,
        console=settings.tracing_console,
    )
    return _tracer


def get_tracer() -> trace.Tracer:
    """Configured tracer, or the global (no-op unless installed) one."""
    return _tracer or trace.get_tracer("apiauth")


def _mark_failed(current_span: Span, exc: BaseException) -> None:
    current_span.set_status(Status(StatusCode.ERROR, str(exc)))
    current_span.record_exception(exc)


@contextmanager
def span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Run a block inside a span; exceptions mark the span as failed."""
    with get_tracer().start_as_current_span(name, attributes=attributes) as current_span:
        try:
            yield current_span
        except Exception as exc:
            _mark_failed(current_span, exc)
            raise


def traced_request(func: F) -> F:
    """
    Trace a signed client request.

    The wrapped coroutine takes ``(self, method, path, ...)`` and returns an
    object with a ``status`` attribute.
    """

    @wraps(func)
    async def wrapper(self: Any, method: str, path: str, *args: Any, **kwargs: Any) -> Any:
        attributes = {"http.method": method.upper(), "apiauth.path": path}
        with get_tracer().start_as_current_span("apiauth.client.request", attributes=attributes) as current_span:
            try:
                result = await func(self, method, path, *args, **kwargs)
            except Exception as exc:
                status_code = getattr(exc, "status_code", None)
                if status_code is not None:
                    current_span.set_attribute("http.status_code", status_code)
                _mark_failed(current_span, exc)
                raise
            current_span.set_attribute("http.status_code", result.status)
            return result

    return wrapper  # type: ignore[return-value]
