import logging
from typing import Optional
from aiohttp import web
from pydantic import Base64Bytes, ValidationError as PydanticValidationError

from social.bonjour.card.app.config import PublicationPipelineAppKey
from social.bonjour.card.app.handlers.helpers import (
    internal_error_response,
    registry_error_response,
    require_identity,
)
from social.bonjour.card.registry.errors import RegistryException, ValidationError
from social.bonjour.card.registry.profiles import ProfileContent

logger = logging.getLogger(__name__)


class PublishRequest(ProfileContent):
    """JSON body of `POST /api/publish`; the avatar travels base64-encoded."""

    handle: str
    avatar: Optional[Base64Bytes] = None


async def handle_publish(request: web.Request) -> web.Response:
    pipeline = request.app[PublicationPipelineAppKey]
    identity_token = require_identity(request)

    try:
        data = await request.read()
        publish_request = PublishRequest.model_validate_json(data)
    except (OSError, PydanticValidationError) as e:
        details = []
        if isinstance(e, PydanticValidationError):
            details = [
                {"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()
            ]
        return web.json_response(
            status=400,
            data={
                "error": ValidationError.code,
                "message": "Invalid JSON",
                "details": {"errors": details},
            },
        )

    submission = publish_request.model_dump(exclude={"avatar"})
    submission["avatar"] = publish_request.avatar

    try:
        result = await pipeline.publish(identity_token.identity, submission)
    except RegistryException as e:
        logger.info(
            "Rejected submission for %s from %s: %s",
            publish_request.handle,
            identity_token.identity,
            e,
        )
        return registry_error_response(e)
    except Exception as e:
        return await internal_error_response(request, e, "handle_publish")

    return web.json_response(result.model_dump())
