"""Span helpers for the scheduler tick and the sync pass.

Attributes pass through an allowlist so tokens, passwords and cursors can
never be attached to a span by accident.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractContextManager
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

_tracer = trace.get_tracer("mailsync")

SPAN_ATTRIBUTES = frozenset({
    "provider_id", "tenant_id", "provider_type", "outcome", "detail",
    "error_class", "messages", "pages", "batch_size", "submitted",
    "worker_id", "priority", "reason",
})

AttrValue = str | int | float | bool


def _allowed(attributes: dict[str, AttrValue | None]) -> dict[str, AttrValue]:
    return {k: v for k, v in attributes.items() if k in SPAN_ATTRIBUTES and v is not None}


def _mark(span: Span, error: BaseException | None) -> None:
    if error is None:
        span.set_status(Status(StatusCode.OK))
        return
    span.set_status(Status(StatusCode.ERROR, type(error).__name__))
    span.record_exception(error)


def traced(name: str | None = None) -> Callable:
    """Run an async function inside a span named ``name`` (default module.qualname)."""

    def decorator(func: Callable) -> Callable:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("traced() supports async functions only")
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            with _tracer.start_as_current_span(span_name, record_exception=False, set_status_on_exception=False) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _mark(span, e)
                    raise
                _mark(span, None)
                return result

        return wrapper

    return decorator


def add_span_attributes(**attributes: AttrValue | None) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attributes(_allowed(attributes))


class TracedOperation:
    """``async with TracedOperation("sync.pass", {...}) as op: ... op.record(outcome=...)``"""

    def __init__(self, name: str, attributes: dict[str, AttrValue | None] | None = None) -> None:
        self.name = name
        self._initial = _allowed(attributes or {})
        self._cm: AbstractContextManager[Span] | None = None
        self.span: Span | None = None

    def record(self, **attributes: AttrValue | None) -> None:
        if self.span is not None and self.span.is_recording():
            self.span.set_attributes(_allowed(attributes))

    async def __aenter__(self) -> "TracedOperation":
        self._cm = _tracer.start_as_current_span(
            self.name, attributes=self._initial, record_exception=False, set_status_on_exception=False
        )
        self.span = self._cm.__enter__()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        if self._cm is None or self.span is None:
            return
        _mark(self.span, exc_val)
        self._cm.__exit__(exc_type, exc_val, exc_tb)
