"""Remote profile store: record codec, store protocol and implementations.

The store keeps one row per user and enforces optimistic concurrency through
its ``version`` column: a write carrying version ``n`` is accepted only when
the stored row is at ``n - 1`` (or no row exists yet).
"""

import asyncio
from typing import Any, Protocol

import httpx
import structlog
from postgrest.exceptions import APIError
from pydantic import BaseModel, Field, ValidationError, field_validator
from supabase import create_client

from trivia_feed.errors import ProfileValidationError, TransientStoreError, VersionConflictError
from trivia_feed.models.profile import Profile

logger = structlog.get_logger()

UNIQUE_VIOLATION = "23505"


class ProfileRecord(BaseModel):
    """Wire shape of a profile row."""

    id: str
    topics: dict[str, Any] = Field(default_factory=dict)
    interactions: dict[str, Any] = Field(default_factory=dict)
    cold_start_complete: bool = False
    total_questions_answered: int = 0
    last_refreshed: int = 0
    version: int = 0

    @field_validator("topics", "interactions", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return {} if value is None else value

    @classmethod
    def from_profile(cls, profile: Profile, version: int | None = None) -> "ProfileRecord":
        data = profile.model_dump(mode="json")
        return cls(
            id=profile.user_id,
            topics=data["topics"],
            interactions=data["interactions"],
            cold_start_complete=profile.cold_start_complete,
            total_questions_answered=profile.total_answered,
            last_refreshed=profile.last_refreshed,
            version=profile.version if version is None else version,
        )

    def to_profile(self) -> Profile:
        """Decode into a profile; raises ProfileValidationError on malformed data."""
        try:
            interactions = {
                item_id: {"item_id": item_id, **value}
                for item_id, value in self.interactions.items()
            }
            return Profile(
                user_id=self.id,
                topics=self.topics,
                interactions=interactions,
                cold_start_complete=self.cold_start_complete,
                total_answered=self.total_questions_answered,
                last_refreshed=self.last_refreshed,
                version=self.version,
            )
        except (ValidationError, TypeError) as exc:
            raise ProfileValidationError(f"malformed profile record for {self.id}: {exc}") from exc


class ProfileStore(Protocol):
    async def fetch(self, user_id: str) -> ProfileRecord | None:
        """Return the stored record, or None when the user has no row."""
        ...

    async def upsert(self, record: ProfileRecord) -> ProfileRecord:
        """Conditionally write ``record``; raises VersionConflictError on a stale version."""
        ...


class InMemoryProfileStore:
    """Process-local store honouring the same version contract. Used for dev and tests."""

    def __init__(self) -> None:
        self._records: dict[str, ProfileRecord] = {}

    async def fetch(self, user_id: str) -> ProfileRecord | None:
        record = self._records.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def upsert(self, record: ProfileRecord) -> ProfileRecord:
        current = self._records.get(record.id)
        if current is not None and current.version != record.version - 1:
            raise VersionConflictError(record.id, record.version, current.version)
        self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def put(self, record: ProfileRecord) -> None:
        """Write unconditionally, as another device would."""
        self._records[record.id] = record.model_copy(deep=True)


class SupabaseProfileStore:
    """Profile rows in a Supabase (PostgREST) table.

    The Supabase client is synchronous; calls run in a worker thread so the
    event loop is never blocked on the network.

    Args:
        url: Supabase project URL.
        key: Service or anon key.
        table: Table holding one row per user.
        client: Pre-built client (tests inject a fake).
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        table: str = "user_profiles",
        client=None,
    ):
        self._client = client or create_client(url, key)
        self.table = table

    async def fetch(self, user_id: str) -> ProfileRecord | None:
        return await asyncio.to_thread(self._fetch_sync, user_id)

    async def upsert(self, record: ProfileRecord) -> ProfileRecord:
        return await asyncio.to_thread(self._upsert_sync, record)

    def _fetch_sync(self, user_id: str) -> ProfileRecord | None:
        try:
            response = (
                self._client.table(self.table)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            raise TransientStoreError(f"fetch failed for {user_id}: {exc}") from exc
        if response is None or not response.data:
            return None
        try:
            return ProfileRecord.model_validate(response.data)
        except ValidationError as exc:
            raise ProfileValidationError(f"malformed profile row for {user_id}") from exc

    def _upsert_sync(self, record: ProfileRecord) -> ProfileRecord:
        row = record.model_dump(mode="json")
        table = self._client.table(self.table)
        try:
            response = (
                table.update(row)
                .eq("id", record.id)
                .eq("version", record.version - 1)
                .execute()
            )
            if response.data:
                logger.debug("supabase.profile.updated", user_id=record.id, version=record.version)
                return record

            current = self._fetch_sync(record.id)
            if current is not None:
                raise VersionConflictError(record.id, record.version, current.version)

            table.insert(row).execute()
            logger.info("supabase.profile.created", user_id=record.id, version=record.version)
            return record
        except APIError as exc:
            if exc.code == UNIQUE_VIOLATION:
                raise VersionConflictError(record.id, record.version, None) from exc
            raise TransientStoreError(f"upsert failed for {record.id}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientStoreError(f"upsert failed for {record.id}: {exc}") from exc
