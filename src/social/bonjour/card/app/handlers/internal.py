import logging
from aiohttp import web

from social.bonjour.card.app.config import (
    HandleRegistryAppKey,
    HealthGaugeAppKey,
    ResolverAppKey,
)
from social.bonjour.card.app.handlers.helpers import (
    internal_error_response,
    require_identity,
)

logger = logging.getLogger(__name__)


async def handle_internal_me(request: web.Request) -> web.Response:
    registry = request.app[HandleRegistryAppKey]
    resolver = request.app[ResolverAppKey]
    identity_token = require_identity(request)

    try:
        handle = await registry.handle_of(identity_token.identity)
        published = handle is not None and await resolver.resolve(handle) is not None
    except Exception as e:
        return await internal_error_response(request, e, "handle_internal_me")

    # The form locks the username field once a handle is set.
    return web.json_response(
        {
            "identity": identity_token.identity,
            "handle": handle,
            "published": published,
            "public_url": resolver.public_url(handle) if handle is not None else None,
        }
    )


async def handle_internal_ready(request: web.Request):
    health_gauge = request.app[HealthGaugeAppKey]
    if await health_gauge.is_healthy():
        return web.Response(status=200)
    return web.Response(status=503)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)
