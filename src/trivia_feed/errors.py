"""Error types shared by the personalization and sync layers."""


class ProfileValidationError(ValueError):
    """Missing user id or malformed profile data. Raised before any network call."""


class RemoteStoreError(Exception):
    """The remote profile store failed or could not be reached."""


class TransientStoreError(RemoteStoreError):
    """Network-level failure; left for the next scheduled sync."""


class VersionConflictError(RemoteStoreError):
    """A conditional upsert was rejected because the stored version moved on."""

    def __init__(self, user_id: str, attempted_version: int, remote_version: int | None):
        self.user_id = user_id
        self.attempted_version = attempted_version
        self.remote_version = remote_version
        super().__init__(
            f"version conflict for {user_id}: attempted {attempted_version}, "
            f"remote at {remote_version}"
        )


class SyncRetriesExhaustedError(Exception):
    """The conflict resolver gave up after its bounded number of attempts."""

    def __init__(self, user_id: str, attempts: int):
        self.user_id = user_id
        self.attempts = attempts
        super().__init__(f"push for {user_id} failed after {attempts} attempts")
