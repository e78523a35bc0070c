"""Handle to publication entry resolution.

Composes the registry, the profile log and the content store into the
entry a renderer needs for `{base_url}/{handle}.html`. Pure read path.
"""

import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from pydantic import BaseModel
import sentry_sdk

from social.bonjour.card.content.store import ContentStore
from social.bonjour.card.registry.handles import HandleRegistry
from social.bonjour.card.registry.profiles import ProfileStore, SocialLink

logger = logging.getLogger(__name__)


class PublicationEntry(BaseModel):
    """Materialized, publicly servable view of a handle's current profile.

    Built on every resolution from the newest committed profile version, so
    it is never stale with respect to this process's own writes.
    """

    handle: str
    owner: str
    version: int
    title: str
    description: str
    social_links: List[SocialLink]
    email: Optional[str]
    avatar_ref: Optional[str]
    avatar_url: Optional[str]
    public_url: str
    published_at: datetime


def public_url(base_url: str, handle: str) -> str:
    return f"{base_url.rstrip('/')}/{handle}.html"


def blob_url(base_url: str, ref: str) -> str:
    return f"{base_url.rstrip('/')}/blobs/{ref}"


class Resolver:
    """
    Resolves handles to publication entries.

    Resolution is total: an unclaimed handle, a malformed handle or a
    claimed handle without any profile version all resolve to None. So does
    a profile whose avatar blob is missing from the content store; that case
    indicates lost data and is reported rather than served partially.
    """

    def __init__(
        self,
        registry: HandleRegistry,
        profiles: ProfileStore,
        content_store: ContentStore,
        base_url: str,
    ) -> None:
        self.registry = registry
        self.profiles = profiles
        self.content_store = content_store
        self.base_url = base_url
        self.reported_missing: Set[Tuple[str, str]] = set()

    def public_url(self, handle: str) -> str:
        return public_url(self.base_url, self.registry.policy.normalize(handle))

    def report_missing_avatar(self, handle: str, ref: str) -> None:
        """Report a missing avatar to Sentry once per handle and blob."""
        if (handle, ref) in self.reported_missing:
            return
        self.reported_missing.add((handle, ref))
        sentry_sdk.capture_message(
            "Avatar blob is missing",
            level="error",
            fingerprint=["avatar-blob-missing"],
            tags={"handle": handle},
            extras={"avatar_ref": ref},
        )

    async def resolve(self, handle: str) -> Optional[PublicationEntry]:
        if not self.registry.policy.is_valid(handle):
            return None
        key = self.registry.policy.normalize(handle)

        owner = await self.registry.owner_of(key)
        if owner is None:
            return None

        record = await self.profiles.current(key)
        if record is None:
            return None

        avatar_url: Optional[str] = None
        if record.avatar_ref is not None:
            if not await self.content_store.exists(record.avatar_ref):
                logger.error(
                    "Avatar %s of handle %s version %d is missing",
                    record.avatar_ref,
                    key,
                    record.version,
                )
                self.report_missing_avatar(key, record.avatar_ref)
                return None
            avatar_url = blob_url(self.base_url, record.avatar_ref)

        return PublicationEntry(
            handle=key,
            owner=owner,
            version=record.version,
            title=record.title,
            description=record.description,
            social_links=record.social_links,
            email=record.email,
            avatar_ref=record.avatar_ref,
            avatar_url=avatar_url,
            public_url=public_url(self.base_url, key),
            published_at=record.created_at,
        )
