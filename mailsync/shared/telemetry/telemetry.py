"""OpenTelemetry setup for the sync service.

Spans come from the sync pass, the scheduler tick and the instrumented
libraries (FastAPI ops app, SQLAlchemy, Redis). Exporters: console for
development, OTLP over gRPC in production, or none.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from mailsync.core.config import Settings

logger = logging.getLogger(__name__)


def _exporter(kind: str, endpoint: str | None) -> SpanExporter | None:
    if kind == "none":
        return None
    if kind == "otlp":
        if not endpoint:
            raise ValueError("TELEMETRY_OTLP_ENDPOINT is required for the otlp exporter")
        return OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
    if kind != "console":
        logger.warning("Unknown telemetry exporter %r; using console", kind)
    return ConsoleSpanExporter()


class SyncTelemetry:
    """Tracer provider plus library instrumentation, driven by Settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.provider: TracerProvider | None = None

    @property
    def active(self) -> bool:
        return self.provider is not None

    def start(self) -> bool:
        """Install the global tracer provider. Returns False when disabled."""
        settings = self.settings
        if not settings.telemetry_enabled:
            logger.info("Telemetry disabled")
            return False
        resource = Resource(
            attributes={
                SERVICE_NAME: settings.app_name,
                SERVICE_VERSION: settings.app_version,
                "deployment.environment": settings.telemetry_environment,
            }
        )
        provider = TracerProvider(
            resource=resource,
            sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_rate)),
        )
        exporter = _exporter(settings.telemetry_exporter, settings.telemetry_otlp_endpoint)
        if exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        self.provider = provider
        logger.info(
            "Tracing %s %s (exporter=%s, sample_rate=%s)",
            settings.app_name,
            settings.app_version,
            settings.telemetry_exporter,
            settings.telemetry_sample_rate,
        )
        return True

    def instrument_app(self, app: FastAPI) -> None:
        if not self.active:
            return
        FastAPIInstrumentor.instrument_app(app, tracer_provider=self.provider, excluded_urls="/health")

    def instrument_engine(self, engine: AsyncEngine) -> None:
        if not self.active:
            return
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=self.provider)

    def instrument_redis(self) -> None:
        if not self.active:
            return
        RedisInstrumentor().instrument(tracer_provider=self.provider)

    def shutdown(self) -> None:
        """Flush pending spans."""
        if self.provider is None:
            return
        try:
            self.provider.shutdown()
        except Exception:
            logger.exception("Telemetry shutdown failed")
        self.provider = None
