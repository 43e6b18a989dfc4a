"""Observability facade wrapping Pydantic Logfire.

Spans wrap storage backend calls, hooks and reconciliations. Everything is a
no-op until :func:`configure` runs with ``logfire.enabled`` set.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import logfire

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from catalog_assets.config import Settings

_configured = False


def is_available() -> bool:
    return _configured


def configure(settings: Settings) -> None:
    """Initialize logfire from LogfireConfig settings."""
    global _configured

    if not settings.logfire.enabled:
        return

    kwargs: dict[str, Any] = {
        "service_name": settings.logfire.service_name,
        "send_to_logfire": "if-token-present",
    }
    if settings.logfire.environment:
        kwargs["environment"] = settings.logfire.environment
    if settings.logfire.sample_rate != 1.0:
        kwargs["sampling"] = logfire.SamplingOptions(head=settings.logfire.sample_rate)
    if settings.logfire.console:
        kwargs["console"] = logfire.ConsoleOptions()

    logfire.configure(**kwargs)
    _configured = True


def reset() -> None:
    """Forget a previous configure() call. Used by tests."""
    global _configured
    _configured = False


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Instrument the metadata store's engine."""
    if is_available():
        logfire.instrument_sqlalchemy(engine=engine.sync_engine)


@contextmanager
def span(name: str, **attrs: Any):
    """Context manager that yields a logfire span, or None if unavailable."""
    if is_available():
        with logfire.span(name, **attrs) as s:
            yield s
    else:
        yield None


def warning(msg: str, **kwargs: Any) -> None:
    if is_available():
        logfire.warn(msg, **kwargs)
