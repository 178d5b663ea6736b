"""Sync coordinator: per-session profile persistence lifecycle."""

import asyncio
from collections.abc import Callable
from enum import StrEnum

import structlog

from trivia_feed.errors import (
    ProfileValidationError,
    RemoteStoreError,
    SyncRetriesExhaustedError,
)
from trivia_feed.models.profile import Profile
from trivia_feed.storage.remote import ProfileStore
from trivia_feed.sync.merge import merge_into
from trivia_feed.sync.resolver import ConflictResolver

logger = structlog.get_logger()


class SyncState(StrEnum):
    """Session sync lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIAL_LOAD = "initial_load"
    READ_ENABLED = "read_enabled"
    WRITE_ONLY = "write_only"
    CLOSED = "closed"


class AppState(StrEnum):
    """Host application lifecycle as reported by the client."""

    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


class KeyedLocks:
    """One asyncio.Lock per user id; serialises pushes for the same user."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def get(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def discard(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]


_push_locks = KeyedLocks()


class SyncCoordinator:
    """Owns the sync lifecycle of one session's profile.

    ``initial_load`` runs exactly once and reconciles the local profile with
    the remote row. Afterwards the coordinator is either READ_ENABLED (the
    profile has no personalization yet, so cycles may still adopt a remote
    copy) or WRITE_ONLY (cycles push without reading). Pushes are triggered by
    the interval loop, app backgrounding, logout and teardown; at most one is
    in flight per user and later triggers are coalesced into it.

    Args:
        profile: Live profile owned by the session; updated in place.
        store: Remote profile store.
        resolver: Conflict resolver (defaults to one over ``store``).
        interval_seconds: Period of the background push loop.
        teardown_timeout_seconds: Bound on the final push at teardown/logout.
        local_cache: Callable persisting a profile on device.
        locks: Per-user push locks (shared process-wide by default).
    """

    def __init__(
        self,
        profile: Profile,
        store: ProfileStore,
        resolver: ConflictResolver | None = None,
        interval_seconds: float = 300.0,
        teardown_timeout_seconds: float = 5.0,
        local_cache: Callable[[Profile], None] | None = None,
        locks: KeyedLocks | None = None,
    ):
        if not profile.user_id:
            raise ProfileValidationError("sync requires a user id")
        self.profile = profile
        self.store = store
        self.resolver = resolver or ConflictResolver(store)
        self.interval_seconds = interval_seconds
        self.teardown_timeout_seconds = teardown_timeout_seconds
        self._local_cache = local_cache
        self._locks = locks or _push_locks
        self._state = SyncState.UNINITIALIZED
        self._push_task: asyncio.Task | None = None
        self._interval_task: asyncio.Task | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    @property
    def push_in_flight(self) -> bool:
        return self._push_task is not None and not self._push_task.done()

    async def start(self) -> None:
        """Run the initial load and start the periodic push loop."""
        await self.initial_load()
        self._interval_task = asyncio.create_task(self._interval_loop())

    async def initial_load(self) -> SyncState:
        """Reconcile local and remote once per session.

        A newer remote profile is adopted wholesale, as is a personalized
        remote when the local profile has no signal. Otherwise the local
        profile is kept and pushed.
        """
        if self._state is not SyncState.UNINITIALIZED:
            raise RuntimeError(f"initial load already ran for {self.user_id}")
        self._state = SyncState.INITIAL_LOAD
        logger.info("sync_initial_load", user_id=self.user_id)

        try:
            record = await self.store.fetch(self.user_id)
            remote = record.to_profile() if record is not None else None
        except (RemoteStoreError, ProfileValidationError) as exc:
            logger.warning("sync_initial_load_failed", user_id=self.user_id, error=str(exc))
            self._settle_mode()
            return self._state

        if remote is not None and remote.last_refreshed > self.profile.last_refreshed:
            self.profile.adopt(remote)
            logger.info("profile_adopted_remote", user_id=self.user_id, reason="newer")
        elif (
            remote is not None
            and self.profile.has_all_default_weights()
            and not remote.has_all_default_weights()
        ):
            self.profile.adopt(remote)
            logger.info("profile_adopted_remote", user_id=self.user_id, reason="personalized")
        else:
            if remote is not None:
                # Local wins: write over the row we just read.
                self.profile.version = max(self.profile.version, remote.version)
            await self._run_push(self.profile.model_copy(deep=True), "initial_load")

        self._settle_mode()
        return self._state

    def request_push(self, reason: str) -> asyncio.Task | None:
        """Schedule a background push of the current profile.

        Returns:
            The push task (an already running one when coalesced), or None
            when the session is not in a pushing state.
        """
        if self._state not in (SyncState.READ_ENABLED, SyncState.WRITE_ONLY):
            logger.debug("sync_push_skipped", user_id=self.user_id, reason=reason, state=self._state.value)
            return None
        if self.push_in_flight:
            logger.debug("sync_push_coalesced", user_id=self.user_id, reason=reason)
            return self._push_task
        snapshot = self.profile.model_copy(deep=True)
        self._push_task = asyncio.create_task(self._sync_cycle(snapshot, reason))
        return self._push_task

    def on_app_state_change(self, previous: AppState, current: AppState) -> asyncio.Task | None:
        """Push when the app leaves the foreground."""
        if previous is AppState.ACTIVE and current in (AppState.BACKGROUND, AppState.INACTIVE):
            return self.request_push("background")
        return None

    async def logout(self) -> bool:
        """Abort any in-flight push, make one bounded final push, and close."""
        logger.info("sync_logout", user_id=self.user_id)
        await self._abort_push()
        pushed = await self._await_bounded(self.request_push("logout"))
        await self._shutdown()
        return pushed

    async def close(self) -> bool:
        """Teardown: wait (bounded) for a final push before releasing resources."""
        if self._state is SyncState.CLOSED:
            return False
        pushed = await self._await_bounded(self.request_push("teardown"))
        await self._shutdown()
        return pushed

    async def reset(self, profile: Profile | None = None) -> None:
        """Return to UNINITIALIZED for a new session, dropping any pending work."""
        await self._abort_push()
        await self._stop_interval()
        self._locks.discard(self.user_id)
        if profile is not None:
            self.profile = profile
        self._state = SyncState.UNINITIALIZED
        logger.info("sync_reset", user_id=self.user_id)

    def _settle_mode(self) -> None:
        if self.profile.has_all_default_weights():
            if self.profile.total_answered > 0:
                logger.warning(
                    "profile_flat_preferences_ambiguous",
                    user_id=self.user_id,
                    total_answered=self.profile.total_answered,
                )
            self._state = SyncState.READ_ENABLED
        else:
            self._state = SyncState.WRITE_ONLY
        logger.info("sync_mode_selected", user_id=self.user_id, state=self._state.value)

    async def _sync_cycle(self, snapshot: Profile, reason: str) -> bool:
        if self._state is SyncState.READ_ENABLED:
            if not snapshot.has_all_default_weights():
                self._state = SyncState.WRITE_ONLY
                logger.info("sync_mode_selected", user_id=self.user_id, state=self._state.value)
            elif await self._reconcile_read():
                return True
        return await self._run_push(snapshot, reason)

    async def _reconcile_read(self) -> bool:
        """Adopt a personalized remote while the local profile is still all-default."""
        try:
            record = await self.store.fetch(self.user_id)
            remote = record.to_profile() if record is not None else None
        except (RemoteStoreError, ProfileValidationError) as exc:
            logger.warning("sync_reconcile_failed", user_id=self.user_id, error=str(exc))
            return False
        if (
            remote is None
            or remote.has_all_default_weights()
            or not self.profile.has_all_default_weights()
        ):
            return False
        self.profile.adopt(remote)
        self._state = SyncState.WRITE_ONLY
        logger.info("profile_adopted_remote", user_id=self.user_id, reason="reconcile")
        return True

    async def _run_push(self, snapshot: Profile, reason: str) -> bool:
        async with self._locks.get(self.user_id):
            await self._write_local_cache()
            try:
                result = await self.resolver.push(snapshot)
            except SyncRetriesExhaustedError:
                pushed = False
            except (RemoteStoreError, ProfileValidationError) as exc:
                logger.warning("sync_push_failed", user_id=self.user_id, reason=reason, error=str(exc))
                pushed = False
            else:
                self.profile.version = max(self.profile.version, result.version)
                if result.remote is not None:
                    merge_into(self.profile, result.remote)
                pushed = True
                await self._write_local_cache()
        logger.debug("sync_push_finished", user_id=self.user_id, reason=reason, pushed=pushed)
        return pushed

    async def _write_local_cache(self) -> None:
        if self._local_cache is None:
            return
        copy = self.profile.model_copy(deep=True)
        try:
            await asyncio.to_thread(self._local_cache, copy)
        except OSError:
            logger.exception("local_cache_write_failed", user_id=self.user_id)

    async def _await_bounded(self, task: asyncio.Task | None) -> bool:
        if task is None:
            return False
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.teardown_timeout_seconds)
        except TimeoutError:
            logger.warning(
                "sync_final_push_timeout",
                user_id=self.user_id,
                timeout_seconds=self.teardown_timeout_seconds,
            )
            await self._abort_push()
            return False

    async def _abort_push(self) -> None:
        task = self._push_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("sync_push_aborted", user_id=self.user_id)

    async def _stop_interval(self) -> None:
        if self._interval_task is not None:
            self._interval_task.cancel()
            await asyncio.gather(self._interval_task, return_exceptions=True)
            self._interval_task = None

    async def _shutdown(self) -> None:
        await self._stop_interval()
        self._state = SyncState.CLOSED
        self._locks.discard(self.user_id)
        logger.info("sync_closed", user_id=self.user_id)

    async def _interval_loop(self) -> None:
        """Periodically push the current profile."""
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self.request_push("interval")
        except asyncio.CancelledError:
            pass
