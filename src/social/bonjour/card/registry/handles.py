"""Handle claims.

The registry is the only writer of identity <-> handle bindings. A handle is
bound once and forever: there is no transfer and no release, and an identity
holds at most one handle. Uniqueness is enforced by the unique indexes on
`handle_claims`; the check-then-insert below only exists to report the
precise failure, the index is what makes the bind atomic.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from social.bonjour.card.model.engine import begin_write
from social.bonjour.card.model.handles import HANDLE_MAX_LENGTH, HandleClaim
from social.bonjour.card.registry.errors import (
    AlreadyClaimed,
    HandleTaken,
    InvalidHandle,
    InvalidIdentity,
)
from social.bonjour.card.registry.retry import retry_read

logger = logging.getLogger(__name__)

IDENTITY_MAX_LENGTH = 512


@dataclass(frozen=True)
class HandlePolicy:
    """Format rules for handles.

    The pattern is matched against the submitted handle before it is folded
    to lower case, so characters outside the alphabet can never fold into an
    existing handle.
    """

    min_length: int = 1
    max_length: int = HANDLE_MAX_LENGTH
    pattern: str = r"^[A-Za-z0-9_-]+$"
    _compiled: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not 1 <= self.max_length <= HANDLE_MAX_LENGTH:
            raise ValueError(
                f"max_length must be between 1 and {HANDLE_MAX_LENGTH}"
            )
        object.__setattr__(self, "_compiled", re.compile(self.pattern, re.ASCII))

    def normalize(self, handle: Optional[str]) -> str:
        """Return the uniqueness key for a handle or raise InvalidHandle."""
        if handle is None:
            raise InvalidHandle("Handle is required")
        value = handle.strip()
        if len(value) < max(self.min_length, 1):
            raise InvalidHandle(
                "Handle is too short", {"min_length": max(self.min_length, 1)}
            )
        if len(value) > self.max_length:
            raise InvalidHandle(
                "Handle is too long", {"max_length": self.max_length}
            )
        if self._compiled.fullmatch(value) is None:
            raise InvalidHandle("Handle contains invalid characters")
        return value.lower()

    def is_valid(self, handle: Optional[str]) -> bool:
        try:
            self.normalize(handle)
        except InvalidHandle:
            return False
        return True


DEFAULT_HANDLE_POLICY = HandlePolicy()


def normalize_identity(identity: Optional[str]) -> str:
    if identity is None:
        raise InvalidIdentity("Identity is required")
    value = identity.strip()
    if len(value) == 0:
        raise InvalidIdentity("Identity is required")
    if len(value) > IDENTITY_MAX_LENGTH:
        raise InvalidIdentity("Identity is too long")
    return value


async def find_claim_by_handle(
    database_session: AsyncSession, handle: str
) -> Optional[HandleClaim]:
    """Look up a claim by its already-normalized handle."""
    stmt = select(HandleClaim).where(HandleClaim.handle == handle)
    return (await database_session.scalars(stmt)).first()


async def find_claim_by_identity(
    database_session: AsyncSession, identity: str
) -> Optional[HandleClaim]:
    stmt = select(HandleClaim).where(HandleClaim.identity == identity)
    return (await database_session.scalars(stmt)).first()


async def _existing_claim(
    database_session: AsyncSession, identity: str, handle: str
) -> Optional[HandleClaim]:
    """Return the identity's claim on `handle` if it already holds it.

    Raises AlreadyClaimed if the identity holds a different handle and
    HandleTaken if the handle belongs to someone else. Returns None when
    neither side is bound yet.
    """
    owned = await find_claim_by_identity(database_session, identity)
    if owned is not None:
        if owned.handle == handle:
            return owned
        raise AlreadyClaimed(
            "Identity already owns a different handle", {"handle": owned.handle}
        )

    taken = await find_claim_by_handle(database_session, handle)
    if taken is not None:
        raise HandleTaken("Handle is already taken", {"handle": handle})

    return None


async def claim_handle(
    database_session: AsyncSession,
    identity: str,
    handle: str,
    policy: HandlePolicy = DEFAULT_HANDLE_POLICY,
) -> HandleClaim:
    """Bind `handle` to `identity` within the caller's transaction.

    Re-claiming a handle the identity already owns returns the existing claim
    without writing. The insert runs in a savepoint: when a concurrent
    transaction wins the race, the unique index rejects ours, the savepoint is
    rolled back and the committed winner decides which failure to report.
    """
    identity = normalize_identity(identity)
    key = policy.normalize(handle)

    existing = await _existing_claim(database_session, identity, key)
    if existing is not None:
        return existing

    claim = HandleClaim(
        guid=str(ULID()),
        identity=identity,
        handle=key,
        created_at=datetime.now(timezone.utc),
    )
    try:
        async with database_session.begin_nested():
            database_session.add(claim)
    except IntegrityError:
        logger.info("Concurrent claim detected for handle %s", key)
        existing = await _existing_claim(database_session, identity, key)
        if existing is not None:
            return existing
        raise

    logger.info("Claimed handle %s for identity %s", key, identity)
    return claim


class HandleRegistry:
    """
    Authoritative mapping between identities and handles.

    Each public method runs in its own database session. Lookups return None
    for unknown or malformed input and are retried on transient storage
    failures; `claim` is never retried.
    """

    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        policy: HandlePolicy = DEFAULT_HANDLE_POLICY,
        read_retry_attempts: int = 3,
        read_retry_base_delay: float = 0.05,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.policy = policy
        self.read_retry_attempts = read_retry_attempts
        self.read_retry_base_delay = read_retry_base_delay

    async def claim(self, identity: str, handle: str) -> str:
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await begin_write(database_session)
                claim = await claim_handle(
                    database_session, identity, handle, self.policy
                )
                return claim.handle

    async def owner_of(self, handle: str) -> Optional[str]:
        if not self.policy.is_valid(handle):
            return None
        key = self.policy.normalize(handle)

        async def lookup() -> Optional[str]:
            async with self.database_session_maker() as database_session:
                claim = await find_claim_by_handle(database_session, key)
                return claim.identity if claim is not None else None

        return await retry_read(
            lookup,
            self.read_retry_attempts,
            self.read_retry_base_delay,
            name="owner_of",
        )

    async def handle_of(self, identity: str) -> Optional[str]:
        try:
            identity = normalize_identity(identity)
        except InvalidIdentity:
            return None

        async def lookup() -> Optional[str]:
            async with self.database_session_maker() as database_session:
                claim = await find_claim_by_identity(database_session, identity)
                return claim.handle if claim is not None else None

        return await retry_read(
            lookup,
            self.read_retry_attempts,
            self.read_retry_base_delay,
            name="handle_of",
        )
