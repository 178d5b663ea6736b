"""On-device profile cache (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from trivia_feed.config import get_settings
from trivia_feed.errors import ProfileValidationError
from trivia_feed.models.profile import Profile

_SAFE_USER_ID = re.compile(r"^[A-Za-z0-9_.@-]+$")


def get_profile_path(user_id: str) -> Path:
    if not user_id or not _SAFE_USER_ID.match(user_id) or user_id.startswith("."):
        raise ProfileValidationError(f"invalid user id: {user_id!r}")
    return get_settings().profile_cache_dir / f"{user_id}.json"


def load_profile(user_id: str) -> Profile:
    """Load the cached profile, or a fresh all-default one for a new user."""
    path = get_profile_path(user_id)
    if not path.exists():
        return Profile(user_id=user_id)
    try:
        with open(path) as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            data = json.load(f)
            fcntl.flock(f, fcntl.LOCK_UN)
        return Profile(**data)
    except (json.JSONDecodeError, TypeError, ValidationError) as exc:
        raise ProfileValidationError(f"cached profile for {user_id} is malformed") from exc


def save_profile(profile: Profile) -> None:
    path = get_profile_path(profile.user_id)
    with tempfile.NamedTemporaryFile("w", dir=path.parent, delete=False, suffix=".json") as tmp:
        json.dump(profile.model_dump(mode="json"), tmp)
    os.replace(tmp.name, path)
