"""Conflict resolver: pushes a profile, merging with the remote copy on version conflicts."""

from dataclasses import dataclass

import structlog

from trivia_feed.errors import SyncRetriesExhaustedError, VersionConflictError
from trivia_feed.models.profile import Profile
from trivia_feed.storage.remote import ProfileRecord, ProfileStore
from trivia_feed.sync.merge import merge_profiles

logger = structlog.get_logger()

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class PushResult:
    """Outcome of a successful push.

    Attributes:
        version: Version the store accepted.
        remote: Remote profile fetched while resolving a conflict; the caller
            folds it into its live profile. None when the first write succeeded.
        attempts: Number of writes issued.
    """

    version: int
    remote: Profile | None = None
    attempts: int = 1


class ConflictResolver:
    """Writes profiles to the remote store under optimistic concurrency.

    On a version conflict the remote copy is fetched, merged with the local
    snapshot (max per weight, union of interactions), and the write is retried
    at ``remote.version + 1``. Transient store errors propagate unchanged;
    cancellation aborts without merging or retrying.

    Args:
        store: Remote profile store.
        max_attempts: Total writes allowed per push.
    """

    def __init__(self, store: ProfileStore, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    async def push(self, snapshot: Profile) -> PushResult:
        """Push ``snapshot``; it is not mutated.

        Raises:
            SyncRetriesExhaustedError: Every attempt hit a version conflict.
            RemoteStoreError: The store failed for another reason.
        """
        candidate = snapshot.model_copy(deep=True)
        next_version = candidate.version + 1
        remote: Profile | None = None

        for attempt in range(1, self.max_attempts + 1):
            record = ProfileRecord.from_profile(candidate, version=next_version)
            try:
                stored = await self.store.upsert(record)
            except VersionConflictError as exc:
                logger.warning(
                    "version_conflict",
                    user_id=candidate.user_id,
                    attempted_version=exc.attempted_version,
                    remote_version=exc.remote_version,
                    attempt=attempt,
                )
                if attempt == self.max_attempts:
                    break
                remote_record = await self.store.fetch(candidate.user_id)
                if remote_record is None:
                    next_version = 1
                    continue
                remote = remote_record.to_profile()
                candidate = merge_profiles(candidate, remote)
                next_version = remote.version + 1
                continue

            logger.info(
                "profile_pushed",
                user_id=candidate.user_id,
                version=stored.version,
                attempts=attempt,
                merged=remote is not None,
            )
            return PushResult(version=stored.version, remote=remote, attempts=attempt)

        logger.error("sync_retries_exhausted", user_id=candidate.user_id, attempts=self.max_attempts)
        raise SyncRetriesExhaustedError(candidate.user_id, self.max_attempts)
