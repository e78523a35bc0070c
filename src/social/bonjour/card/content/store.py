"""Content-addressed blob storage.

ContentStore is an abstract `{put, get, exists}` capability so the registry
and resolver never depend on where bytes live. Two backends are provided:

- DatabaseContentStore: blobs in the `content_blobs` table
- FilesystemContentStore: blobs under a sharded directory tree

Both share the same reference scheme and size rules, implemented once in
the base class.
"""

import asyncio
import contextlib
import hashlib
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.bonjour.card.model.blobs import ContentBlob
from social.bonjour.card.model.engine import begin_write
from social.bonjour.card.registry.errors import EmptyInput, NotFound, TooLarge
from social.bonjour.card.registry.retry import retry_read

logger = logging.getLogger(__name__)

REF_PREFIX = "sha256-"
REF_PATTERN = re.compile(r"^sha256-[0-9a-f]{64}$")

DEFAULT_MAX_BLOB_SIZE = 50 * 1024 * 1024


def compute_ref(data: bytes) -> str:
    return REF_PREFIX + hashlib.sha256(data).hexdigest()


def is_valid_ref(ref: Optional[str]) -> bool:
    return ref is not None and REF_PATTERN.fullmatch(ref) is not None


class ContentStore(ABC):
    """
    Write-once, content-addressed blob storage.

    `put` enforces the size bounds, derives the reference from the bytes and
    delegates to the backend only when the blob is not already stored.
    `get` and `exists` are reads and are retried on transient failures.
    Unknown or malformed references raise NotFound from `get`.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_BLOB_SIZE,
        read_retry_attempts: int = 3,
        read_retry_base_delay: float = 0.05,
    ) -> None:
        self.max_size = max_size
        self.read_retry_attempts = read_retry_attempts
        self.read_retry_base_delay = read_retry_base_delay

    async def put(self, data: bytes, max_size: Optional[int] = None) -> str:
        limit = self.max_size if max_size is None else max_size
        if data is None or len(data) == 0:
            raise EmptyInput("Content is empty")
        if len(data) > limit:
            raise TooLarge(
                "Content exceeds the maximum size",
                {"size": len(data), "max_size": limit},
            )

        ref = compute_ref(data)
        if await self._exists(ref):
            return ref
        if await self._write(ref, bytes(data)):
            logger.info("Stored blob %s (%d bytes)", ref, len(data))
        return ref

    async def get(self, ref: str) -> bytes:
        if not is_valid_ref(ref):
            raise NotFound("Unknown content reference", {"ref": ref})
        data = await retry_read(
            lambda: self._read(ref),
            self.read_retry_attempts,
            self.read_retry_base_delay,
            name="content_get",
        )
        if data is None:
            raise NotFound("Unknown content reference", {"ref": ref})
        return data

    async def exists(self, ref: str) -> bool:
        if not is_valid_ref(ref):
            return False
        return await retry_read(
            lambda: self._exists(ref),
            self.read_retry_attempts,
            self.read_retry_base_delay,
            name="content_exists",
        )

    async def close(self) -> None:
        pass

    @abstractmethod
    async def _write(self, ref: str, data: bytes) -> bool:
        """Persist `data` under `ref`; return False if another writer got there first."""

    @abstractmethod
    async def _read(self, ref: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def _exists(self, ref: str) -> bool:
        pass


class DatabaseContentStore(ContentStore):
    """Blobs stored as rows of `content_blobs`, keyed by reference."""

    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        max_size: int = DEFAULT_MAX_BLOB_SIZE,
        read_retry_attempts: int = 3,
        read_retry_base_delay: float = 0.05,
    ) -> None:
        super().__init__(max_size, read_retry_attempts, read_retry_base_delay)
        self.database_session_maker = database_session_maker

    async def _write(self, ref: str, data: bytes) -> bool:
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await begin_write(database_session)
                exists_stmt = select(ContentBlob.ref).where(ContentBlob.ref == ref)
                if (await database_session.scalars(exists_stmt)).first() is not None:
                    return False
                try:
                    async with database_session.begin_nested():
                        database_session.add(
                            ContentBlob(
                                ref=ref,
                                size=len(data),
                                content=data,
                                created_at=datetime.now(timezone.utc),
                            )
                        )
                except IntegrityError:
                    # Identical bytes committed by a concurrent writer.
                    return False
                return True

    async def _read(self, ref: str) -> Optional[bytes]:
        async with self.database_session_maker() as database_session:
            stmt = select(ContentBlob.content).where(ContentBlob.ref == ref)
            return (await database_session.scalars(stmt)).first()

    async def _exists(self, ref: str) -> bool:
        async with self.database_session_maker() as database_session:
            stmt = select(ContentBlob.ref).where(ContentBlob.ref == ref)
            return (await database_session.scalars(stmt)).first() is not None


class FilesystemContentStore(ContentStore):
    """
    Blobs stored as files under `root/<two hex chars>/<ref>`.

    Each write goes to a temporary file in the target directory and is moved
    into place with `os.replace`, so a reader never sees a partial blob and
    concurrent writers of the same content each install a complete copy.
    """

    def __init__(
        self,
        root: Union[str, Path],
        max_size: int = DEFAULT_MAX_BLOB_SIZE,
        read_retry_attempts: int = 3,
        read_retry_base_delay: float = 0.05,
    ) -> None:
        super().__init__(max_size, read_retry_attempts, read_retry_base_delay)
        self.root = Path(root)

    def path_for(self, ref: str) -> Path:
        digest = ref[len(REF_PREFIX):]
        return self.root / digest[:2] / ref

    async def _write(self, ref: str, data: bytes) -> bool:
        return await asyncio.to_thread(self._write_sync, self.path_for(ref), data)

    async def _read(self, ref: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read_sync, self.path_for(ref))

    async def _exists(self, ref: str) -> bool:
        return await asyncio.to_thread(self.path_for(ref).is_file)

    @staticmethod
    def _write_sync(path: Path, data: bytes) -> bool:
        if path.is_file():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise
        return True

    @staticmethod
    def _read_sync(path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None


def create_content_store(
    backend: str,
    database_session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    content_path: Optional[Union[str, Path]] = None,
    max_size: int = DEFAULT_MAX_BLOB_SIZE,
    read_retry_attempts: int = 3,
    read_retry_base_delay: float = 0.05,
) -> ContentStore:
    """
    Create the content store for the configured backend.

    Args:
        backend: Backend type ('database', 'filesystem')
        database_session_maker: Session factory, required for 'database'
        content_path: Root directory, required for 'filesystem'
        max_size: Default maximum blob size in bytes
        read_retry_attempts: Attempts for reads before giving up
        read_retry_base_delay: Initial backoff delay in seconds

    Raises:
        ValueError: If the backend is unknown or its requirement is missing
    """
    backend = backend.lower()

    if backend == "database":
        if database_session_maker is None:
            raise ValueError("The 'database' content backend requires a session maker")
        return DatabaseContentStore(
            database_session_maker,
            max_size=max_size,
            read_retry_attempts=read_retry_attempts,
            read_retry_base_delay=read_retry_base_delay,
        )

    elif backend == "filesystem":
        if content_path is None:
            raise ValueError("The 'filesystem' content backend requires a content path")
        return FilesystemContentStore(
            content_path,
            max_size=max_size,
            read_retry_attempts=read_retry_attempts,
            read_retry_base_delay=read_retry_base_delay,
        )

    raise ValueError(
        f"Invalid content backend: {backend}. "
        f"Supported backends: 'database', 'filesystem'"
    )
