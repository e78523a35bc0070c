import asyncio
import contextlib
import logging
from time import time
from typing import (
    Optional,
)
import jinja2
from aiohttp import web
import aiohttp_jinja2
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.bonjour.card.app.config import (
    ContentStoreAppKey,
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HandleRegistryAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    ProfileStoreAppKey,
    PublicationPipelineAppKey,
    ResolverAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
)
from social.bonjour.card.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_me,
    handle_internal_ready,
)
from social.bonjour.card.app.handlers.public import (
    handle_card_page,
    handle_get_blob,
    handle_get_handle,
    handle_get_history,
)
from social.bonjour.card.app.handlers.publish import handle_publish
from social.bonjour.card.app.metrics import create_metrics_client
from social.bonjour.card.app.tasks import tick_health_task
from social.bonjour.card.content.store import create_content_store
from social.bonjour.card.model.engine import (
    create_database_engine,
    create_session_maker,
)
from social.bonjour.card.model.health import HealthGauge
from social.bonjour.card.registry.handles import HandleRegistry
from social.bonjour.card.registry.pipeline import PublicationPipeline
from social.bonjour.card.registry.profiles import ProfileStore
from social.bonjour.card.resolve.publication import Resolver

logger = logging.getLogger(__name__)

# Headroom for base64 expansion of the avatar plus the other JSON fields.
REQUEST_OVERHEAD = 64 * 1024


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_database_engine(settings.database_url)
    app[DatabaseAppKey] = engine
    database_session = create_session_maker(engine)
    app[DatabaseSessionMakerAppKey] = database_session

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    policy = settings.handle_policy()

    content_store = create_content_store(
        settings.content_backend,
        database_session_maker=database_session,
        content_path=settings.content_path,
        max_size=settings.max_blob_size,
        read_retry_attempts=settings.read_retry_attempts,
        read_retry_base_delay=settings.read_retry_base_delay,
    )
    app[ContentStoreAppKey] = content_store

    registry = HandleRegistry(
        database_session,
        policy=policy,
        read_retry_attempts=settings.read_retry_attempts,
        read_retry_base_delay=settings.read_retry_base_delay,
    )
    app[HandleRegistryAppKey] = registry

    profile_store = ProfileStore(
        database_session,
        policy=policy,
        page_size=settings.history_page_size,
        read_retry_attempts=settings.read_retry_attempts,
        read_retry_base_delay=settings.read_retry_base_delay,
        content_store=content_store,
    )
    app[ProfileStoreAppKey] = profile_store

    app[ResolverAppKey] = Resolver(
        registry, profile_store, content_store, settings.base_url
    )
    app[PublicationPipelineAppKey] = PublicationPipeline(
        database_session,
        content_store,
        settings.base_url,
        policy=policy,
        metrics_client=metrics_client,
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    await app[ContentStoreAppKey].close()
    await app[DatabaseAppKey].dispose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    # Route patterns keep handle and blob ref values out of metric tags.
    resource = request.match_info.route.resource
    request_path = resource.canonical if resource is not None else "unmatched"

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "bonjour.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "bonjour.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "bonjour.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=True,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[statsd_middleware, sentry_middleware],
        client_max_size=(settings.max_blob_size * 4) // 3 + REQUEST_OVERHEAD,
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    app.add_routes([web.post("/api/publish", handle_publish)])

    app.add_routes(
        [
            web.get("/api/handles/{handle}", handle_get_handle),
            web.get("/api/handles/{handle}/history", handle_get_history),
            web.get("/blobs/{ref}", handle_get_blob),
            web.get("/{handle}.html", handle_card_page),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
            web.get("/internal/api/me", handle_internal_me),
        ]
    )

    _ = aiohttp_jinja2.setup(
        app,
        enable_async=True,
        autoescape=True,
        loader=jinja2.FileSystemLoader(settings.templates_path),
    )

    app.cleanup_ctx.append(background_tasks)

    return app
