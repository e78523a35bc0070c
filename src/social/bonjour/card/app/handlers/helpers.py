from dataclasses import dataclass
import json
import logging
from typing import (
    Any,
    Dict,
    Optional,
)
from aiohttp import web
from jwcrypto import jwt
from jwcrypto.common import JWException
import sentry_sdk

from social.bonjour.card.app.config import (
    HealthGaugeAppKey,
    SettingsAppKey,
)
from social.bonjour.card.registry.errors import RegistryException

logger = logging.getLogger(__name__)


@dataclass(repr=False, eq=False)
class IdentityToken:
    """
    A verified identity token presented by the wallet-connect front end.

    Attributes:
        identity: The wallet address, taken from the `sub` claim
        issued_at: The `iat` claim, if present
    """

    identity: str
    issued_at: Optional[int] = None


class AuthenticationException(Exception):
    """
    Exception raised for authentication failures.

    This exception class provides static methods for creating specific
    authentication failure instances with appropriate error messages.
    """

    @staticmethod
    def jwt_invalid() -> "AuthenticationException":
        """The token could not be parsed or its signature did not verify."""
        return AuthenticationException("error-auth-helper-1000 Invalid identity token")

    @staticmethod
    def jwt_subject_missing() -> "AuthenticationException":
        """JWT is missing the required 'sub' claim."""
        return AuthenticationException("error-auth-helper-1001 JWT missing subject")


def identity_token_helper(request: web.Request) -> Optional[IdentityToken]:
    """
    Verify the bearer token of a request and return the identity it carries.

    The token is an ES256 JWT issued by the wallet auth service after it verified the wallet
    signature; its `sub` claim is the wallet address. This service trusts the subject once the
    signature verifies against the configured key set and performs no wallet-level checks itself.

    Returns:
        An IdentityToken, or None if the request carries no bearer token

    Raises:
        AuthenticationException: If a token is present but invalid
    """
    authorizations: Optional[str] = request.headers.getone("Authorization", None)
    if (
        authorizations is None
        or not authorizations.startswith("Bearer ")
        or len(authorizations) < 8
    ):
        return None

    serialized_identity_token = authorizations[7:]
    settings = request.app[SettingsAppKey]

    try:
        validated_identity_token = jwt.JWT(
            jwt=serialized_identity_token, key=settings.json_web_keys, algs=["ES256"]
        )
        claims: Dict[str, Any] = json.loads(validated_identity_token.claims)
    except (JWException, ValueError) as e:
        logger.info("Rejected identity token: %s", e)
        raise AuthenticationException.jwt_invalid() from e

    subject = claims.get("sub", None)
    if not isinstance(subject, str) or len(subject.strip()) == 0:
        raise AuthenticationException.jwt_subject_missing()

    issued_at = claims.get("iat", None)
    return IdentityToken(
        identity=subject.strip(),
        issued_at=issued_at if isinstance(issued_at, int) else None,
    )


def require_identity(request: web.Request) -> IdentityToken:
    """Like identity_token_helper, but answers 401 when no valid token is present."""
    try:
        identity_token = identity_token_helper(request)
    except AuthenticationException as e:
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "error-auth-helper-1000", "message": str(e)}),
            content_type="application/json",
        )
    if identity_token is None:
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "Not Authorized"}),
            content_type="application/json",
        )
    return identity_token


def registry_error_response(e: RegistryException) -> web.Response:
    return web.json_response(status=e.status, data=e.as_dict())


async def report_unexpected(request: web.Request, e: Exception, where: str) -> None:
    """Log and capture a failure outside of regular flow control."""
    logger.exception("%s: Exception", where)
    sentry_sdk.capture_exception(e)
    await request.app[HealthGaugeAppKey].womp()


async def internal_error_response(
    request: web.Request, e: Exception, where: str
) -> web.Response:
    await report_unexpected(request, e, where)

    settings = request.app[SettingsAppKey]
    data: Dict[str, Any] = {"error": "Internal Server Error"}
    if settings.debug:
        data["error_type"] = type(e).__name__
        data["error_message"] = str(e)
    return web.json_response(status=500, data=data)
