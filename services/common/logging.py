import logging
from typing import Any, Literal, Mapping

from opentelemetry import trace

from .config import ServiceSettings


_TRACE_PLACEHOLDER = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | trace_id=%(trace_id)s span_id=%(span_id)s"
    " | %(message)s%(context_fields)s"
)


def _format_trace_id(value: int, length: int) -> str:
    return format(value, f"0{length}x")


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text):
        return f'"{text}"'
    return text


def render_context(context: Mapping[str, Any] | None) -> str:
    """Render a context mapping as space separated ``key=value`` pairs."""

    if not context:
        return ""
    return " ".join(
        f"{key}={_render_value(value)}" for key, value in context.items() if value is not None
    )


class TraceContextFilter(logging.Filter):
    """Populate trace/span identifiers when an OpenTelemetry span is active."""

    def filter(self, record: logging.LogRecord) -> bool:
        span = trace.get_current_span()
        span_context = span.get_span_context() if span is not None else None
        if span_context is not None and span_context.is_valid:
            record.trace_id = _format_trace_id(span_context.trace_id, 32)
            record.span_id = _format_trace_id(span_context.span_id, 16)
        else:
            record.trace_id = _TRACE_PLACEHOLDER
            record.span_id = _TRACE_PLACEHOLDER
        return True


class ContextFieldsFilter(logging.Filter):
    """Render ``extra={"context": {...}}`` payloads into the log line."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "context", None)
        rendered = render_context(context) if isinstance(context, Mapping) else ""
        record.context_fields = f" | {rendered}" if rendered else ""
        return True


_FILTER_TYPES: tuple[type[logging.Filter], ...] = (TraceContextFilter, ContextFieldsFilter)


def _attach_filters(target: logging.Filterer, filters: list[logging.Filter]) -> None:
    for candidate in filters:
        if not any(isinstance(existing, type(candidate)) for existing in target.filters):
            target.addFilter(candidate)


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level, format and context filters."""

    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = settings.log_level
    logging.basicConfig(level=logging_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging_level)
    filters: list[logging.Filter] = []
    for filter_type in _FILTER_TYPES:
        existing = next((f for f in root_logger.filters if isinstance(f, filter_type)), None)
        filters.append(existing or filter_type())
    _attach_filters(root_logger, filters)
    for handler in root_logger.handlers:
        _attach_filters(handler, filters)
