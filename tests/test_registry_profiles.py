"""
Unit tests for versioned profiles in social.bonjour.card.registry.profiles

Tests cover field validation, ownership checks, version numbering, history
iteration and concurrent updates of the same profile.
"""

import asyncio

import pytest

from social.bonjour.card.model.engine import begin_write
from social.bonjour.card.registry.errors import NotFound, NotOwner, ValidationError
from social.bonjour.card.registry.handles import claim_handle
from social.bonjour.card.registry.profiles import (
    ProfileFields,
    ProfileStore,
    validate_profile_fields,
)
from tests.test_helpers import ALICE, BOB, PNG_BYTES, sample_profile

AVATAR_REF = "sha256-" + "ab" * 32


class TestValidateProfileFields:
    """Test suite for profile field validation."""

    def test_valid_fields(self):
        fields = validate_profile_fields(sample_profile(avatar_ref=AVATAR_REF))

        assert isinstance(fields, ProfileFields)
        assert fields.title == "Alice"
        assert fields.avatar_ref == AVATAR_REF
        assert [link.platform for link in fields.social_links] == ["github", "x"]

    def test_strips_and_folds(self):
        fields = validate_profile_fields(
            sample_profile(
                title="  Alice  ",
                social_links=[{"platform": " GitHub ", "url": " https://github.com/a "}],
                email="",
            )
        )

        assert fields.title == "Alice"
        assert fields.social_links[0].platform == "github"
        assert fields.social_links[0].url == "https://github.com/a"
        assert fields.email is None

    def test_description_bounds(self):
        """A 1500 character description is accepted, 1501 is rejected."""
        fields = validate_profile_fields(sample_profile(description="d" * 1500))
        assert len(fields.description) == 1500

        with pytest.raises(ValidationError) as exc_info:
            validate_profile_fields(sample_profile(description="d" * 1501))
        assert exc_info.value.code == "error-profile-1101"
        assert exc_info.value.details["errors"][0]["loc"] == ["description"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": ""},
            {"title": "t" * 151},
            {"email": "not-an-email"},
            {"email": "a" * 140 + "@example.com"},
            {"social_links": [{"platform": "github", "url": "ftp://github.com/a"}]},
            {"social_links": [{"platform": "github", "url": "https://g.co/" + "a" * 150}]},
            {
                "social_links": [
                    {"platform": "github", "url": "https://github.com/a"},
                    {"platform": "GitHub", "url": "https://github.com/b"},
                ]
            },
            {
                "social_links": [
                    {"platform": f"p{i}", "url": "https://example.com"}
                    for i in range(17)
                ]
            },
            {"avatar_ref": "sha256-xyz"},
            {"avatar_ref": "md5-" + "ab" * 16},
            {"unknown": "field"},
        ],
    )
    def test_invalid_fields(self, overrides):
        with pytest.raises(ValidationError):
            validate_profile_fields(sample_profile(**overrides))

    def test_minimal_fields(self):
        fields = validate_profile_fields({"title": "A"})

        assert fields.description == ""
        assert fields.social_links == []
        assert fields.email is None
        assert fields.avatar_ref is None


class TestProfileStore:
    """Test suite for profile updates and reads."""

    async def test_update_unclaimed_handle(self, profile_store):
        with pytest.raises(NotFound):
            await profile_store.update("alice", ALICE, sample_profile())

    async def test_update_invalid_handle(self, profile_store):
        with pytest.raises(NotFound):
            await profile_store.update("not a handle", ALICE, sample_profile())

    async def test_update_appends_versions(self, handle_registry, profile_store):
        """Each update appends the next version and becomes current."""
        await handle_registry.claim(ALICE, "alice")

        assert await profile_store.current("alice") is None

        assert await profile_store.update("alice", ALICE, sample_profile("v1")) == 1
        assert await profile_store.update("Alice", ALICE, sample_profile("v2")) == 2

        current = await profile_store.current("ALICE")
        assert current is not None
        assert current.handle == "alice"
        assert current.version == 2
        assert current.title == "v2"
        assert current.email == "alice@example.com"
        assert current.social_links[0].url == "https://github.com/alice"

    async def test_update_by_non_owner(self, handle_registry, profile_store):
        """A non-owner update fails and leaves the profile unchanged."""
        await handle_registry.claim(ALICE, "alice")
        await handle_registry.claim(BOB, "bob")
        await profile_store.update("alice", ALICE, sample_profile("original"))

        with pytest.raises(NotOwner) as exc_info:
            await profile_store.update("alice", BOB, sample_profile("hijacked"))
        assert exc_info.value.status == 403

        current = await profile_store.current("alice")
        assert current.version == 1
        assert current.title == "original"

    async def test_update_with_invalid_fields(self, handle_registry, profile_store):
        """A rejected update leaves the profile unchanged."""
        await handle_registry.claim(ALICE, "alice")
        await profile_store.update("alice", ALICE, sample_profile("original"))

        with pytest.raises(ValidationError):
            await profile_store.update(
                "alice", ALICE, sample_profile(description="d" * 1501)
            )

        current = await profile_store.current("alice")
        assert current.version == 1
        assert current.description == "Builder of small things."

    async def test_update_with_unknown_avatar(
        self, handle_registry, profile_store, resolver
    ):
        """An avatar reference must name a stored blob."""
        await handle_registry.claim(ALICE, "alice")
        await profile_store.update("alice", ALICE, sample_profile("original"))

        with pytest.raises(ValidationError) as exc_info:
            await profile_store.update(
                "alice", ALICE, sample_profile(avatar_ref=AVATAR_REF)
            )
        assert exc_info.value.details["errors"][0]["loc"] == ["avatar_ref"]

        current = await profile_store.current("alice")
        assert current.version == 1
        assert current.avatar_ref is None
        assert (await resolver.resolve("alice")).title == "original"

    async def test_update_with_stored_avatar(
        self, handle_registry, profile_store, database_content_store, resolver
    ):
        await handle_registry.claim(ALICE, "alice")
        avatar_ref = await database_content_store.put(PNG_BYTES)

        assert (
            await profile_store.update(
                "alice", ALICE, sample_profile(avatar_ref=avatar_ref)
            )
            == 1
        )
        assert (await resolver.resolve("alice")).avatar_ref == avatar_ref

    async def test_current_of_unknown_handle(self, profile_store):
        assert await profile_store.current("nobody") is None
        assert await profile_store.current("not a handle") is None

    async def test_profiles_are_isolated(self, handle_registry, profile_store):
        await handle_registry.claim(ALICE, "alice")
        await handle_registry.claim(BOB, "bob")

        await profile_store.update("alice", ALICE, sample_profile("alice v1"))
        await profile_store.update("bob", BOB, sample_profile("bob v1"))
        await profile_store.update("bob", BOB, sample_profile("bob v2"))

        assert (await profile_store.current("alice")).version == 1
        assert (await profile_store.current("bob")).version == 2


class TestProfileHistory:
    """Test suite for iterating profile versions."""

    async def test_history_newest_first(self, handle_registry, profile_store):
        await handle_registry.claim(ALICE, "alice")
        for i in range(1, 4):
            await profile_store.update("alice", ALICE, sample_profile(f"v{i}"))

        records = await profile_store.history("alice").all()

        assert [record.version for record in records] == [3, 2, 1]
        assert [record.title for record in records] == ["v3", "v2", "v1"]

    async def test_history_is_restartable(self, handle_registry, profile_store):
        """Iterating again starts from the newest version, including new ones."""
        await handle_registry.claim(ALICE, "alice")
        await profile_store.update("alice", ALICE, sample_profile("v1"))
        await profile_store.update("alice", ALICE, sample_profile("v2"))

        history = profile_store.history("alice")
        first = [record.version async for record in history]
        second = [record.version async for record in history]
        assert first == second == [2, 1]

        await profile_store.update("alice", ALICE, sample_profile("v3"))
        assert [record.version async for record in history] == [3, 2, 1]

    async def test_history_pages(self, session_maker, handle_registry):
        """Histories longer than a page are read across several pages."""
        store = ProfileStore(session_maker, page_size=2, read_retry_base_delay=0)
        await handle_registry.claim(ALICE, "alice")
        for i in range(1, 6):
            await store.update("alice", ALICE, sample_profile(f"v{i}"))

        records = await store.history("alice").all()

        assert [record.version for record in records] == [5, 4, 3, 2, 1]

    async def test_history_early_exit(self, session_maker, handle_registry):
        store = ProfileStore(session_maker, page_size=2, read_retry_base_delay=0)
        await handle_registry.claim(ALICE, "alice")
        for i in range(1, 6):
            await store.update("alice", ALICE, sample_profile(f"v{i}"))

        seen = []
        async for record in store.history("alice"):
            seen.append(record.version)
            if len(seen) == 3:
                break

        assert seen == [5, 4, 3]

    async def test_history_of_claim_without_versions(
        self, handle_registry, profile_store
    ):
        await handle_registry.claim(ALICE, "alice")

        assert await profile_store.history("alice").all() == []

    async def test_history_of_unclaimed_handle(self, profile_store):
        with pytest.raises(NotFound):
            await profile_store.history("nobody").all()

        with pytest.raises(NotFound):
            await profile_store.history("not a handle").all()


class TestConcurrentUpdates:
    async def test_concurrent_updates_get_distinct_versions(
        self, handle_registry, profile_store
    ):
        """Concurrent updates are ordered; the last to commit is current."""
        await handle_registry.claim(ALICE, "alice")

        versions = await asyncio.gather(
            *[
                profile_store.update("alice", ALICE, sample_profile(f"title {i}"))
                for i in range(6)
            ]
        )

        assert sorted(versions) == [1, 2, 3, 4, 5, 6]

        records = await profile_store.history("alice").all()
        assert [record.version for record in records] == [6, 5, 4, 3, 2, 1]

        current = await profile_store.current("alice")
        assert current.version == 6
        assert current.title == records[0].title

    async def test_reads_do_not_wait_for_writers(
        self, session_maker, handle_registry, profile_store
    ):
        """Lookups answer while another transaction holds the write lock."""
        await handle_registry.claim(ALICE, "alice")
        await profile_store.update("alice", ALICE, sample_profile("v1"))

        async with session_maker() as database_session:
            async with database_session.begin():
                await begin_write(database_session)
                await claim_handle(database_session, BOB, "bob")

                owner = await asyncio.wait_for(handle_registry.owner_of("alice"), 5)
                assert owner == ALICE
                current = await asyncio.wait_for(profile_store.current("alice"), 5)
                assert current.version == 1
                assert await asyncio.wait_for(handle_registry.owner_of("bob"), 5) is None

        assert await handle_registry.owner_of("bob") == BOB
