"""Tests for the conflict resolver."""

from unittest.mock import AsyncMock

import pytest

from trivia_feed.errors import SyncRetriesExhaustedError, TransientStoreError, VersionConflictError
from trivia_feed.models.profile import Profile
from trivia_feed.storage.remote import InMemoryProfileStore, ProfileRecord
from trivia_feed.sync.resolver import ConflictResolver


def make_profile(version=0, topic=None, delta=0.2):
    profile = Profile(user_id="u1", version=version, last_refreshed=1000)
    if topic:
        profile.path(topic, "s", "b")[0].adjust(delta, now=1000)
    return profile


async def test_first_push_creates_row():
    store = InMemoryProfileStore()
    result = await ConflictResolver(store).push(make_profile(topic="Science"))

    assert result.version == 1
    assert result.attempts == 1
    assert result.remote is None
    stored = await store.fetch("u1")
    assert stored.version == 1
    assert stored.topics["Science"]["weight"] == pytest.approx(0.7)


async def test_conflict_merges_and_retries_at_remote_plus_one():
    store = InMemoryProfileStore()
    store.put(ProfileRecord.from_profile(make_profile(version=4, topic="History", delta=0.3)))
    local = make_profile(version=2, topic="Science")

    result = await ConflictResolver(store).push(local)

    assert result.version == 5
    assert result.attempts == 2
    assert result.remote.version == 4
    stored = (await store.fetch("u1")).to_profile()
    assert stored.version == 5
    assert stored.topic_weight("Science") == pytest.approx(0.7)
    assert stored.topic_weight("History") == pytest.approx(0.8)


async def test_snapshot_not_mutated():
    store = InMemoryProfileStore()
    store.put(ProfileRecord.from_profile(make_profile(version=4, topic="History")))
    local = make_profile(version=2, topic="Science")
    before = local.model_dump()

    await ConflictResolver(store).push(local)

    assert local.model_dump() == before


async def test_retries_exhausted():
    store = AsyncMock()
    store.upsert.side_effect = VersionConflictError("u1", 1, 9)
    store.fetch.return_value = ProfileRecord.from_profile(make_profile(version=9))

    with pytest.raises(SyncRetriesExhaustedError) as exc_info:
        await ConflictResolver(store, max_attempts=3).push(make_profile())

    assert exc_info.value.attempts == 3
    assert store.upsert.await_count == 3
    assert store.fetch.await_count == 2


async def test_transient_error_propagates():
    store = AsyncMock()
    store.upsert.side_effect = TransientStoreError("offline")

    with pytest.raises(TransientStoreError):
        await ConflictResolver(store).push(make_profile())
    assert store.fetch.await_count == 0


async def test_row_deleted_during_conflict_restarts_at_one():
    store = AsyncMock()
    store.upsert.side_effect = [
        VersionConflictError("u1", 3, 7),
        ProfileRecord.from_profile(make_profile(), version=1),
    ]
    store.fetch.return_value = None

    result = await ConflictResolver(store).push(make_profile(version=2))

    assert result.version == 1
    retried = store.upsert.await_args_list[1].args[0]
    assert retried.version == 1
