"""Per-session feed: candidate pool, initial batch, checkpoint and steady-state refills."""

from collections.abc import Callable, Iterable

import structlog

from trivia_feed.generation.fingerprint import FingerprintIndex, question_fingerprint
from trivia_feed.models.item import CandidateItem, Outcome
from trivia_feed.models.profile import Interaction, Profile, now_ms
from trivia_feed.personalization.cold_start import (
    CHECKPOINT_POSITIONS,
    ColdStartController,
    ColdStartPhase,
)
from trivia_feed.personalization.weights import apply_outcome

logger = structlog.get_logger()


class Feed:
    """Ordered list of items shown to one user.

    ``position`` counts the items the user has moved past. Reaching a
    checkpoint position appends a fresh cold-start batch; after cold start
    the feed is topped up from the scoring engine whenever fewer than
    ``batch_size`` items are left ahead of the user.

    Args:
        profile: Live profile owned by the session.
        controller: Cold-start controller (delegates to scoring in steady state).
        batch_size: Items appended per refill.
        clock: Millisecond clock for interaction timestamps.
    """

    def __init__(
        self,
        profile: Profile,
        controller: ColdStartController | None = None,
        batch_size: int = 4,
        clock: Callable[[], int] = now_ms,
    ):
        self.profile = profile
        self.controller = controller or ColdStartController()
        self.batch_size = batch_size
        self.clock = clock
        self.items: list[CandidateItem] = []
        self.position = 0
        self._pool: dict[str, CandidateItem] = {}
        self._fingerprints = FingerprintIndex()
        self._checkpoints_reached: set[int] = set()

    @property
    def upcoming(self) -> list[CandidateItem]:
        return self.items[self.position:]

    @property
    def phase(self) -> ColdStartPhase:
        return self.controller.phase(self.profile)

    def available(self) -> list[CandidateItem]:
        """Pool candidates not yet placed in the feed."""
        placed = {item.id for item in self.items}
        return [item for item_id, item in self._pool.items() if item_id not in placed]

    def needs_candidates(self) -> bool:
        return len(self.available()) < 2 * self.batch_size

    def add_candidates(self, candidates: Iterable[CandidateItem]) -> int:
        """Add items to the pool, dropping known ids and duplicate questions.

        Returns:
            Number of items accepted.
        """
        added = 0
        for item in candidates:
            if item.id in self._pool or not self._fingerprints.add(item.question, item.tags):
                logger.debug("candidate_duplicate_dropped", item_id=item.id)
                continue
            if item.fingerprint is None:
                item = item.model_copy(
                    update={"fingerprint": question_fingerprint(item.question, item.tags)}
                )
            self._pool[item.id] = item
            added += 1
        return added

    def fill(self, size: int) -> list[CandidateItem]:
        """Append up to ``size`` items chosen for the current phase."""
        batch = self.controller.select_batch(
            self.available(),
            self.profile,
            size,
            history=[item.topic for item in self.items],
        )
        self.items.extend(batch)
        return batch

    def record(
        self,
        item_id: str,
        outcome: Outcome,
        time_spent_ms: int,
        now: int | None = None,
    ) -> tuple[Interaction, list[CandidateItem]]:
        """Apply an interaction and refill the feed when due.

        Returns:
            The upserted interaction and any items appended to the feed.
        """
        index = next((i for i, item in enumerate(self.items) if item.id == item_id), None)
        if index is None:
            raise KeyError(f"item {item_id} is not in the feed")
        item = self.items[index]

        interaction = apply_outcome(
            self.profile, item, outcome, time_spent_ms,
            now=self.clock() if now is None else now,
        )
        phase = self.controller.observe(self.profile)
        self.position = max(self.position, index + 1)

        added: list[CandidateItem] = []
        # Jumping ahead in the feed still fires every checkpoint passed over
        due = [
            checkpoint for checkpoint in CHECKPOINT_POSITIONS
            if checkpoint <= self.position and checkpoint not in self._checkpoints_reached
        ]
        for checkpoint in due:
            self._checkpoints_reached.add(checkpoint)
            batch = self.controller.checkpoint(
                checkpoint, self.items, self.available(), self.profile, self.batch_size
            )
            self.items.extend(batch)
            added.extend(batch)
        if not due and (not self.upcoming or (
            phase is ColdStartPhase.STEADY_STATE and len(self.upcoming) < self.batch_size
        )):
            added = self.fill(self.batch_size)
        return interaction, added
