"""Versioned profile records.

A profile is an append-only log of immutable versions bound to a handle
claim. An update never touches a prior version: it validates the new
payload, checks that the caller owns the handle and appends version N+1.
Appends for the same handle are serialized by locking the claim row, so
concurrent updates are ordered and the last one to commit is current.
"""

import logging
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterator,
    List,
    Mapping,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.bonjour.card.content.store import ContentStore
from social.bonjour.card.model.engine import begin_write
from social.bonjour.card.model.handles import HandleClaim
from social.bonjour.card.model.profiles import ProfileVersion
from social.bonjour.card.registry.errors import (
    InvalidHandle,
    InvalidIdentity,
    NotFound,
    NotOwner,
    ValidationError,
)
from social.bonjour.card.registry.handles import (
    DEFAULT_HANDLE_POLICY,
    HandlePolicy,
    find_claim_by_handle,
    normalize_identity,
)
from social.bonjour.card.registry.retry import retry_read

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 150
DESCRIPTION_MAX_LENGTH = 1500
LINK_URL_MAX_LENGTH = 150
EMAIL_MAX_LENGTH = 150
MAX_SOCIAL_LINKS = 16

CONTENT_REF_PATTERN = r"^sha256-[0-9a-f]{64}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


class SocialLink(BaseModel):
    """A single {platform, url} entry of a profile."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    platform: str = Field(min_length=1, max_length=32, pattern=r"^[a-z0-9_-]+$")
    url: str = Field(
        min_length=1, max_length=LINK_URL_MAX_LENGTH, pattern=r"^https?://\S+$"
    )

    @field_validator("platform", mode="before")
    @classmethod
    def fold_platform(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("url", mode="before")
    @classmethod
    def strip_url(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v


class ProfileContent(BaseModel):
    """User-editable profile fields shared by updates and submissions."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    social_links: List[SocialLink] = Field(
        default_factory=list, max_length=MAX_SOCIAL_LINKS
    )
    email: Optional[str] = Field(
        default=None, min_length=3, max_length=EMAIL_MAX_LENGTH, pattern=EMAIL_PATTERN
    )

    @field_validator("email", mode="before")
    @classmethod
    def empty_email_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and len(v.strip()) == 0:
            return None
        return v

    @field_validator("social_links")
    @classmethod
    def unique_platforms(cls, v: List[SocialLink]) -> List[SocialLink]:
        seen = set()
        for link in v:
            if link.platform in seen:
                raise ValueError(f"duplicate platform {link.platform}")
            seen.add(link.platform)
        return v


class ProfileFields(ProfileContent):
    """Complete payload of one profile version."""

    avatar_ref: Optional[str] = Field(default=None, pattern=CONTENT_REF_PATTERN)


class ProfileRecord(ProfileFields):
    """A committed profile version as read back from storage."""

    handle: str
    version: int
    created_at: datetime


def validate_profile_fields(
    fields: Union[ProfileFields, Mapping[str, Any]],
) -> ProfileFields:
    """Validate a payload, converting pydantic failures to ValidationError."""
    try:
        if isinstance(fields, ProfileFields):
            return ProfileFields.model_validate(fields.model_dump())
        return ProfileFields.model_validate(dict(fields))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid profile fields",
            {
                "errors": [
                    {"loc": list(error["loc"]), "msg": error["msg"]}
                    for error in e.errors()
                ]
            },
        ) from e


def record_from_version(handle: str, version: ProfileVersion) -> ProfileRecord:
    return ProfileRecord(
        handle=handle,
        version=version.version,
        title=version.title,
        description=version.description,
        avatar_ref=version.avatar_ref,
        social_links=version.social_links or [],
        email=version.email,
        created_at=version.created_at,
    )


async def latest_version(
    database_session: AsyncSession, claim_guid: str
) -> Optional[ProfileVersion]:
    stmt = (
        select(ProfileVersion)
        .where(ProfileVersion.claim_guid == claim_guid)
        .order_by(ProfileVersion.version.desc())
        .limit(1)
    )
    return (await database_session.scalars(stmt)).first()


async def append_profile_version(
    database_session: AsyncSession,
    claim: HandleClaim,
    fields: ProfileFields,
    keep_avatar: bool = False,
) -> ProfileVersion:
    """Append the next version for `claim` within the caller's transaction.

    The claim row is locked first so that concurrent appends for the same
    handle queue behind each other and read the version number left by the
    previous writer. With `keep_avatar`, a payload without an avatar
    reference inherits the one of the version it follows.
    """
    lock_stmt = (
        select(HandleClaim.guid).where(HandleClaim.guid == claim.guid).with_for_update()
    )
    await database_session.execute(lock_stmt)

    previous = await latest_version(database_session, claim.guid)
    next_version = 1 if previous is None else previous.version + 1

    avatar_ref = fields.avatar_ref
    if avatar_ref is None and keep_avatar and previous is not None:
        avatar_ref = previous.avatar_ref

    profile_version = ProfileVersion(
        claim_guid=claim.guid,
        version=next_version,
        title=fields.title,
        description=fields.description,
        avatar_ref=avatar_ref,
        social_links=[link.model_dump() for link in fields.social_links],
        email=fields.email,
        created_at=datetime.now(timezone.utc),
    )
    database_session.add(profile_version)
    await database_session.flush()

    logger.info("Appended version %d for handle %s", next_version, claim.handle)
    return profile_version


async def update_profile(
    database_session: AsyncSession,
    handle: str,
    identity: str,
    fields: ProfileFields,
) -> ProfileVersion:
    """Append a version to the profile of an already-normalized handle."""
    claim = await find_claim_by_handle(database_session, handle)
    if claim is None:
        raise NotFound("Handle is not claimed", {"handle": handle})
    if claim.identity != identity:
        raise NotOwner("Identity does not own this handle", {"handle": handle})
    return await append_profile_version(database_session, claim, fields)


class ProfileHistory:
    """
    Lazy, finite, restartable view over a handle's versions, newest first.

    Versions are fetched in pages of `page_size`, keyed on the version number
    so each page is an independent query. Each `async for` starts again from
    the newest version committed at that moment. Iterating the history of an
    unclaimed handle raises NotFound.
    """

    def __init__(self, store: "ProfileStore", handle: str) -> None:
        self.store = store
        self.handle = handle

    def __aiter__(self) -> AsyncIterator[ProfileRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProfileRecord]:
        key = self.store.normalize_or_not_found(self.handle)
        claim = await self.store.read(
            lambda database_session: find_claim_by_handle(database_session, key),
            name="history",
        )
        if claim is None:
            raise NotFound("Handle is not claimed", {"handle": key})

        before: Optional[int] = None
        while True:
            page = await self.store.read(
                lambda database_session: self._page(database_session, claim.guid, before),
                name="history",
            )
            for version in page:
                yield record_from_version(key, version)
            if len(page) < self.store.page_size:
                return
            before = page[-1].version

    async def _page(
        self, database_session: AsyncSession, claim_guid: str, before: Optional[int]
    ) -> List[ProfileVersion]:
        stmt = select(ProfileVersion).where(ProfileVersion.claim_guid == claim_guid)
        if before is not None:
            stmt = stmt.where(ProfileVersion.version < before)
        stmt = stmt.order_by(ProfileVersion.version.desc()).limit(self.store.page_size)
        return list((await database_session.scalars(stmt)).all())

    async def all(self) -> List[ProfileRecord]:
        return [record async for record in self]


class ProfileStore:
    """
    Versioned profile payloads keyed by handle.

    `update` is the only write path and requires the caller to own the
    handle. Reads never mutate and are retried on transient failures.
    """

    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        policy: HandlePolicy = DEFAULT_HANDLE_POLICY,
        page_size: int = 50,
        read_retry_attempts: int = 3,
        read_retry_base_delay: float = 0.05,
        content_store: Optional[ContentStore] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.policy = policy
        self.page_size = max(1, page_size)
        self.content_store = content_store
        self.read_retry_attempts = read_retry_attempts
        self.read_retry_base_delay = read_retry_base_delay

    def normalize_or_not_found(self, handle: str) -> str:
        try:
            return self.policy.normalize(handle)
        except InvalidHandle as e:
            raise NotFound("Handle is not claimed", {"handle": handle}) from e

    async def read(self, query, name: str = "read"):
        """Run `query(database_session)` in a fresh session with read retries."""

        async def attempt():
            async with self.database_session_maker() as database_session:
                return await query(database_session)

        return await retry_read(
            attempt, self.read_retry_attempts, self.read_retry_base_delay, name=name
        )

    async def update(
        self,
        handle: str,
        identity: str,
        fields: Union[ProfileFields, Mapping[str, Any]],
    ) -> int:
        fields = validate_profile_fields(fields)
        key = self.normalize_or_not_found(handle)
        try:
            identity = normalize_identity(identity)
        except InvalidIdentity as e:
            raise NotOwner("Identity does not own this handle", {"handle": key}) from e

        if (
            fields.avatar_ref is not None
            and self.content_store is not None
            and not await self.content_store.exists(fields.avatar_ref)
        ):
            raise ValidationError(
                "Avatar is not stored",
                {
                    "errors": [
                        {"loc": ["avatar_ref"], "msg": "Unknown content reference"}
                    ]
                },
            )

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await begin_write(database_session)
                profile_version = await update_profile(
                    database_session, key, identity, fields
                )
                return profile_version.version

    async def current(self, handle: str) -> Optional[ProfileRecord]:
        if not self.policy.is_valid(handle):
            return None
        key = self.policy.normalize(handle)

        async def query(database_session: AsyncSession) -> Optional[ProfileRecord]:
            claim = await find_claim_by_handle(database_session, key)
            if claim is None:
                return None
            version = await latest_version(database_session, claim.guid)
            if version is None:
                return None
            return record_from_version(key, version)

        return await self.read(query, name="current")

    def history(self, handle: str) -> ProfileHistory:
        return ProfileHistory(self, handle)
