"""Ride dispatch service entry point.

Wires settings, logging, the SQL store, the change feed and the routing
client into the dispatch core and serves the HTTP API with uvicorn.
"""

import logging
from datetime import timedelta

import uvicorn
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from redis.asyncio import Redis

from . import __version__
from .api import create_app
from .db.database import init_database
from .dispatch_logging import setup_logging
from .geo.osrm_client import OSRMClient
from .notifications import RedisNotificationDeduplicator
from .notifications.dispatch import Deduplicator
from .pubsub import ChangeFeed, LocalChangeFeed, RedisChangeFeed
from .service import build_core
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def init_otel_sdk(settings: Settings) -> None:
    """Export spans over OTLP gRPC when an endpoint is configured."""
    if not settings.dispatch.otel_endpoint:
        return
    resource = Resource.create(
        {
            "service.name": "ride-dispatch",
            "service.version": __version__,
            "deployment.environment": settings.dispatch.environment,
        }
    )
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.dispatch.otel_endpoint, insecure=True))
    )
    trace.set_tracer_provider(trace_provider)
    HTTPXClientInstrumentor().instrument()
    logger.info("OpenTelemetry tracing initialized (endpoint=%s)", settings.dispatch.otel_endpoint)


def create_async_redis_client(settings: Settings) -> "Redis[str]":
    return Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        password=settings.redis.password or None,
        ssl=settings.redis.ssl,
        decode_responses=True,
    )


def create_feed_and_dedup(settings: Settings) -> tuple[ChangeFeed, Deduplicator | None]:
    """Redis pub/sub when enabled (multi-node), otherwise an in-process feed."""
    if not settings.redis.enabled:
        logger.info("Redis disabled, using in-process change feed")
        return LocalChangeFeed(), None

    client = create_async_redis_client(settings)
    logger.info(f"Redis change feed on {settings.redis.host}:{settings.redis.port}")
    return (
        RedisChangeFeed(client, channel=settings.redis.channel),
        RedisNotificationDeduplicator(
            client, ttl=timedelta(seconds=settings.notifications.dedup_ttl_seconds)
        ),
    )


def main() -> None:
    """Main entry point - initializes and runs the dispatch service."""
    settings = get_settings()

    setup_logging(
        level=settings.dispatch.log_level,
        json_output=settings.dispatch.log_format == "json",
        environment=settings.dispatch.environment,
    )
    init_otel_sdk(settings)
    logger.info("Starting ride dispatch service...")

    session_factory = init_database(
        settings.database.url,
        echo=settings.database.echo,
        busy_timeout_seconds=settings.database.busy_timeout_seconds,
    )

    osrm_client = OSRMClient(settings.routing.base_url, timeout=settings.routing.timeout_seconds)
    logger.info(f"OSRM client configured: {settings.routing.base_url}")

    feed, deduplicator = create_feed_and_dedup(settings)
    core = build_core(settings, session_factory, feed, osrm_client, deduplicator=deduplicator)
    app = create_app(core, settings)

    logger.info(f"Serving on {settings.dispatch.host}:{settings.dispatch.port}")
    uvicorn.run(
        app,
        host=settings.dispatch.host,
        port=settings.dispatch.port,
        log_level=settings.dispatch.log_level.lower(),
    )


if __name__ == "__main__":
    main()
