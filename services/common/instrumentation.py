from typing import Any, cast

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import ServiceSettings
from .tracing import configure_tracing

SERVICE_VERSION = "0.1.0"
_UNMETERED_HANDLERS = ["/health", "/metrics"]


def instrument_app(app: FastAPI, settings: ServiceSettings) -> None:
    """Expose ``/metrics`` when enabled and keep the settings on ``app.state``."""

    if settings.enable_metrics:
        instrumentator = Instrumentator(
            should_group_status_codes=False,
            excluded_handlers=_UNMETERED_HANDLERS,
        )
        instrumentator.instrument(app).expose(app, include_in_schema=False)

    state = cast(Any, app.state)
    state.settings = settings


def build_app(settings: ServiceSettings, **extra_kwargs: Any) -> FastAPI:
    """FastAPI instance with service metadata, metrics and tracing wired in."""

    app = FastAPI(title=settings.app_name, version=SERVICE_VERSION, **extra_kwargs)
    instrument_app(app, settings)
    configure_tracing(app, settings)
    return app
