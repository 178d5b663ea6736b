"""Tests for the on-device profile cache."""

import pytest

from trivia_feed.errors import ProfileValidationError
from trivia_feed.models.profile import Profile
from trivia_feed.storage import local_cache
from trivia_feed.storage.local_cache import get_profile_path as real_get_profile_path


@pytest.fixture(autouse=True)
def patch_profile_path(tmp_path, monkeypatch):
    def _get_profile_path(user_id: str):
        tmp_path.mkdir(parents=True, exist_ok=True)
        return tmp_path / f"{user_id}.json"

    monkeypatch.setattr(local_cache, "get_profile_path", _get_profile_path)


def test_load_profile_new_user():
    profile = local_cache.load_profile("user_new")
    assert isinstance(profile, Profile)
    assert profile.user_id == "user_new"
    assert profile.has_all_default_weights()
    assert profile.version == 0


def test_save_and_load():
    profile = local_cache.load_profile("user_save")
    profile.path("Science", "Physics", "Optics")[2].adjust(0.2, now=10)
    profile.total_answered = 4
    profile.version = 3
    local_cache.save_profile(profile)

    loaded = local_cache.load_profile("user_save")
    assert loaded.branch_weight("Science", "Physics", "Optics") == pytest.approx(0.7)
    assert loaded.total_answered == 4
    assert loaded.version == 3


def test_save_replaces_atomically(tmp_path):
    local_cache.save_profile(Profile(user_id="user_atomic", version=1))
    local_cache.save_profile(Profile(user_id="user_atomic", version=2))
    assert local_cache.load_profile("user_atomic").version == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == ["user_atomic.json"]


def test_malformed_cache_rejected(tmp_path):
    (tmp_path / "user_bad.json").write_text('{"user_id": "user_bad", "topics": {"A": {"weight": "x"}}}')
    with pytest.raises(ProfileValidationError):
        local_cache.load_profile("user_bad")

    (tmp_path / "user_corrupt.json").write_text("{not json")
    with pytest.raises(ProfileValidationError):
        local_cache.load_profile("user_corrupt")


@pytest.mark.parametrize("user_id", ["", "../etc", ".hidden", "a/b", "with space"])
def test_unsafe_user_ids_rejected(user_id):
    with pytest.raises(ProfileValidationError):
        real_get_profile_path(user_id)
