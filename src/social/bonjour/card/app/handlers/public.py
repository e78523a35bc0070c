import logging
from typing import Any, Dict, List
from aiohttp import web
import aiohttp_jinja2

from social.bonjour.card.app.config import (
    ContentStoreAppKey,
    ProfileStoreAppKey,
    ResolverAppKey,
    SettingsAppKey,
)
from social.bonjour.card.app.handlers.helpers import (
    internal_error_response,
    registry_error_response,
    report_unexpected,
)
from social.bonjour.card.registry.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def sniff_content_type(data: bytes) -> str:
    """Best-effort image type detection for avatar blobs."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


async def handle_card_page(request: web.Request) -> web.Response:
    resolver = request.app[ResolverAppKey]
    settings = request.app[SettingsAppKey]
    handle = request.match_info["handle"]

    try:
        entry = await resolver.resolve(handle)
    except Exception as e:
        await report_unexpected(request, e, "handle_card_page")
        entry = None

    if entry is None:
        return await aiohttp_jinja2.render_template_async(
            "not_found.html",
            request,
            context={"base_url": settings.base_url},
            status=404,
        )

    return await aiohttp_jinja2.render_template_async(
        "card.html", request, context={"entry": entry}
    )


async def handle_get_handle(request: web.Request) -> web.Response:
    resolver = request.app[ResolverAppKey]
    handle = request.match_info["handle"]

    try:
        entry = await resolver.resolve(handle)
    except Exception as e:
        return await internal_error_response(request, e, "handle_get_handle")

    if entry is None:
        return registry_error_response(
            NotFound("Handle is not published", {"handle": handle})
        )
    return web.json_response(entry.model_dump(mode="json"))


async def handle_get_history(request: web.Request) -> web.Response:
    profile_store = request.app[ProfileStoreAppKey]
    handle = request.match_info["handle"]

    try:
        limit = int(request.query.get("limit", DEFAULT_HISTORY_LIMIT))
    except ValueError:
        return web.json_response(status=400, data={"error": "Invalid limit"})
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))

    results: List[Dict[str, Any]] = []
    try:
        async for record in profile_store.history(handle):
            results.append(record.model_dump(mode="json"))
            if len(results) >= limit:
                break
    except NotFound as e:
        return registry_error_response(e)
    except Exception as e:
        return await internal_error_response(request, e, "handle_get_history")

    return web.json_response(results)


async def handle_get_blob(request: web.Request) -> web.Response:
    content_store = request.app[ContentStoreAppKey]
    ref = request.match_info["ref"]

    try:
        data = await content_store.get(ref)
    except NotFound as e:
        return registry_error_response(e)
    except Exception as e:
        return await internal_error_response(request, e, "handle_get_blob")

    return web.Response(
        body=data,
        content_type=sniff_content_type(data),
        headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL, "ETag": f'"{ref}"'},
    )
