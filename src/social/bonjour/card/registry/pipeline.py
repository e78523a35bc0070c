"""Publication pipeline.

Turns a submission from the card form into a published profile:

1. Validate the identity, the handle and every profile field (no side effects)
2. Store the avatar bytes, if any, in the content store
3. Claim the handle, or confirm the identity already owns it
4. Append the new profile version
5. Report the version and the public URL

Steps 3 and 4 share one database transaction, so a failure in either leaves
the registry and the profile log as they were. A blob stored in step 2 may
end up unreferenced; blobs are immutable and collected out of band.
"""

import logging
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.bonjour.card.app.metrics import MetricsClient, NoOpMetricsClient
from social.bonjour.card.content.store import ContentStore
from social.bonjour.card.model.engine import begin_write
from social.bonjour.card.registry.errors import RegistryException, ValidationError
from social.bonjour.card.registry.handles import (
    DEFAULT_HANDLE_POLICY,
    HandlePolicy,
    claim_handle,
    normalize_identity,
)
from social.bonjour.card.registry.profiles import (
    ProfileContent,
    ProfileFields,
    append_profile_version,
)
from social.bonjour.card.resolve.publication import public_url

logger = logging.getLogger(__name__)


class Submission(ProfileContent):
    """A card form submission: handle, profile fields and optional avatar bytes."""

    handle: str
    avatar: Optional[bytes] = None


class PublicationResult(BaseModel):
    handle: str
    version: int
    avatar_ref: Optional[str]
    public_url: str


def validate_submission(
    submission: Union[Submission, Mapping[str, Any]],
) -> Submission:
    try:
        if isinstance(submission, Submission):
            return Submission.model_validate(submission.model_dump())
        return Submission.model_validate(dict(submission))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid submission",
            {
                "errors": [
                    {"loc": list(error["loc"]), "msg": error["msg"]}
                    for error in e.errors()
                ]
            },
        ) from e


class PublicationPipeline:
    """
    Orchestrates one submission as a single all-or-nothing unit.

    When the submission carries no avatar bytes, the new version keeps the
    avatar of the version it follows.
    """

    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        content_store: ContentStore,
        base_url: str,
        policy: HandlePolicy = DEFAULT_HANDLE_POLICY,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.content_store = content_store
        self.base_url = base_url
        self.policy = policy
        self.metrics_client = metrics_client or NoOpMetricsClient()

    async def publish(
        self,
        identity: str,
        submission: Union[Submission, Mapping[str, Any]],
    ) -> PublicationResult:
        try:
            result = await self._publish(identity, submission)
        except RegistryException as e:
            self.metrics_client.increment(
                "bonjour.publish.count", 1, tag_dict={"outcome": e.code}
            )
            raise
        self.metrics_client.increment(
            "bonjour.publish.count", 1, tag_dict={"outcome": "published"}
        )
        return result

    async def _publish(
        self,
        identity: str,
        submission: Union[Submission, Mapping[str, Any]],
    ) -> PublicationResult:
        submission = validate_submission(submission)
        identity = normalize_identity(identity)
        handle = self.policy.normalize(submission.handle)

        avatar_ref: Optional[str] = None
        if submission.avatar is not None:
            avatar_ref = await self.content_store.put(submission.avatar)

        fields = ProfileFields(
            title=submission.title,
            description=submission.description,
            social_links=submission.social_links,
            email=submission.email,
            avatar_ref=avatar_ref,
        )

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await begin_write(database_session)
                claim = await claim_handle(
                    database_session, identity, handle, self.policy
                )
                profile_version = await append_profile_version(
                    database_session, claim, fields, keep_avatar=True
                )

        logger.info(
            "Published handle %s version %d", handle, profile_version.version
        )
        return PublicationResult(
            handle=handle,
            version=profile_version.version,
            avatar_ref=profile_version.avatar_ref,
            public_url=public_url(self.base_url, handle),
        )
