"""Per-user feed sessions and the process-wide session registry."""

import asyncio
import functools
from collections.abc import Callable, Iterable

import structlog

from trivia_feed.config import Settings, get_settings
from trivia_feed.generation.generator import QuestionGenerator
from trivia_feed.generation.preferences import MAX_RECENT_QUESTIONS, extract_preferences
from trivia_feed.models.item import CandidateItem, Outcome
from trivia_feed.models.profile import Interaction, Profile, now_ms
from trivia_feed.personalization.cold_start import ColdStartController
from trivia_feed.personalization.feed import Feed
from trivia_feed.storage.local_cache import load_profile, save_profile
from trivia_feed.storage.remote import InMemoryProfileStore, ProfileStore, SupabaseProfileStore
from trivia_feed.sync.coordinator import AppState, KeyedLocks, SyncCoordinator
from trivia_feed.sync.resolver import ConflictResolver

logger = structlog.get_logger()


def build_profile_store(settings: Settings) -> ProfileStore:
    """Supabase when configured, otherwise a process-local store."""
    if settings.remote_store_configured:
        return SupabaseProfileStore(
            url=settings.supabase_url,
            key=settings.supabase_key,
            table=settings.profiles_table,
        )
    logger.warning("remote_store_not_configured", fallback="in_memory")
    return InMemoryProfileStore()


def build_generator(settings: Settings) -> QuestionGenerator | None:
    if not settings.openai_api_key:
        logger.info("question_generation_disabled")
        return None
    return QuestionGenerator(
        api_key=settings.openai_api_key,
        model=settings.generation_model,
        batch_size=settings.generation_batch_size,
    )


class FeedSession:
    """Everything one signed-in user needs: profile, feed and sync lifecycle.

    The profile object is shared by the feed and the coordinator; remote
    adoption and merges update it in place so both always see the same state.
    """

    def __init__(
        self,
        profile: Profile,
        store: ProfileStore,
        settings: Settings | None = None,
        generator: QuestionGenerator | None = None,
        controller: ColdStartController | None = None,
        locks: KeyedLocks | None = None,
        local_cache: Callable[[Profile], None] | None = save_profile,
        clock: Callable[[], int] = now_ms,
    ):
        settings = settings or get_settings()
        self.profile = profile
        self.initial_feed_size = settings.initial_feed_size
        self.feed = Feed(profile, controller, batch_size=settings.feed_batch_size, clock=clock)
        self.sync = SyncCoordinator(
            profile,
            store,
            ConflictResolver(store, max_attempts=settings.max_conflict_attempts),
            interval_seconds=settings.sync_interval_seconds,
            teardown_timeout_seconds=settings.teardown_timeout_seconds,
            local_cache=local_cache,
            locks=locks,
        )
        self.generator = generator
        self.app_state = AppState.ACTIVE
        self._replenish_task: asyncio.Task | None = None

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    async def start(self) -> None:
        await self.sync.start()
        self.feed.controller.observe(self.profile)
        logger.info(
            "session_started",
            user_id=self.user_id,
            phase=self.feed.phase.name,
            sync_state=self.sync.state.value,
        )

    def add_candidates(self, items: Iterable[CandidateItem]) -> int:
        added = self.feed.add_candidates(items)
        if not self.feed.items:
            self.feed.fill(self.initial_feed_size)
        return added

    def record(
        self,
        item_id: str,
        outcome: Outcome,
        time_spent_ms: int,
    ) -> tuple[Interaction, list[CandidateItem]]:
        """Apply an interaction to the local profile; never waits on the network."""
        interaction, added = self.feed.record(item_id, outcome, time_spent_ms)
        if self.generator is not None and self.feed.needs_candidates():
            self.request_replenish()
        return interaction, added

    def request_replenish(self) -> asyncio.Task | None:
        if self.generator is None:
            return None
        if self._replenish_task is None or self._replenish_task.done():
            self._replenish_task = asyncio.create_task(self.replenish())
        return self._replenish_task

    async def replenish(self) -> int:
        """Generate fresh candidates from the profile's current preferences."""
        if self.generator is None:
            return 0
        preferences = extract_preferences(
            self.profile, recent_items=self.feed.items[-MAX_RECENT_QUESTIONS:]
        )
        items = await self.generator.generate(preferences)
        added = self.add_candidates(items)
        logger.info("candidates_replenished", user_id=self.user_id, generated=len(items), added=added)
        return added

    def set_app_state(self, state: AppState) -> bool:
        """Report a host lifecycle change; returns True when a push was triggered."""
        previous, self.app_state = self.app_state, state
        return self.sync.on_app_state_change(previous, state) is not None

    async def close(self, logout: bool = False) -> bool:
        if self._replenish_task is not None and not self._replenish_task.done():
            self._replenish_task.cancel()
            await asyncio.gather(self._replenish_task, return_exceptions=True)
        if logout:
            return await self.sync.logout()
        return await self.sync.close()


class SessionRegistry:
    """Open sessions keyed by user id. One session per user per process."""

    def __init__(
        self,
        store: ProfileStore | None = None,
        settings: Settings | None = None,
        generator: QuestionGenerator | None = None,
        profile_loader: Callable[[str], Profile] = load_profile,
        local_cache: Callable[[Profile], None] | None = save_profile,
        locks: KeyedLocks | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or build_profile_store(self.settings)
        self.generator = generator
        self.profile_loader = profile_loader
        self.local_cache = local_cache
        self.locks = locks
        self._sessions: dict[str, FeedSession] = {}
        self._open_locks = KeyedLocks()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> FeedSession | None:
        return self._sessions.get(user_id)

    async def open(self, user_id: str) -> FeedSession:
        """Return the user's session, starting one from the local cache if needed.

        Raises:
            ProfileValidationError: The user id is invalid or the cached
                profile is malformed.
        """
        async with self._open_locks.get(user_id):
            session = self._sessions.get(user_id)
            if session is not None:
                return session
            profile = await asyncio.to_thread(self.profile_loader, user_id)
            session = FeedSession(
                profile,
                self.store,
                settings=self.settings,
                generator=self.generator,
                locks=self.locks,
                local_cache=self.local_cache,
            )
            self._sessions[user_id] = session
            try:
                await session.start()
            except BaseException:
                self._sessions.pop(user_id, None)
                raise
            return session

    async def close(self, user_id: str, logout: bool = False) -> bool:
        """Close a session; returns False when none was open."""
        session = self._sessions.pop(user_id, None)
        self._open_locks.discard(user_id)
        if session is None:
            return False
        pushed = await session.close(logout=logout)
        logger.info("session_closed", user_id=user_id, logout=logout, final_push=pushed)
        return True

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.close(user_id)


@functools.lru_cache
def get_registry() -> SessionRegistry:
    """Get the process-wide session registry."""
    settings = get_settings()
    return SessionRegistry(settings=settings, generator=build_generator(settings))
