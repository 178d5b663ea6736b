"""Cold-start controller: scripted exploration for a user's first answered items."""

import random
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass
from enum import IntEnum

import structlog

from trivia_feed.models.item import CandidateItem, Difficulty
from trivia_feed.models.profile import DEFAULT_WEIGHT, Profile
from trivia_feed.personalization.diversity import enforce_topic_diversity
from trivia_feed.personalization.scoring import ScoringEngine, topic_affinity

logger = structlog.get_logger()

COLD_START_QUESTIONS = 20
CHECKPOINT_POSITIONS = (4, 8, 12, 16, 20)


class ColdStartPhase(IntEnum):
    EXPLORATION = 1
    BRANCHING = 2
    ADAPTIVE = 3
    STEADY_STATE = 4

    @classmethod
    def from_answered(cls, total_answered: int) -> "ColdStartPhase":
        """Determine the phase from the number of answered items."""
        if total_answered < 5:
            return cls.EXPLORATION
        elif total_answered < 12:
            return cls.BRANCHING
        elif total_answered < COLD_START_QUESTIONS:
            return cls.ADAPTIVE
        else:
            return cls.STEADY_STATE


@dataclass(frozen=True)
class PhasePolicy:
    """Eligibility filter and exploration share for one phase."""

    min_topic_weight: float | None
    exploration_ratio: float
    max_difficulty: Difficulty | None = None
    introduce_subtopics: bool = False


PHASE_POLICIES: dict[ColdStartPhase, PhasePolicy] = {
    ColdStartPhase.EXPLORATION: PhasePolicy(
        min_topic_weight=None, exploration_ratio=1.0, max_difficulty=Difficulty.MEDIUM
    ),
    ColdStartPhase.BRANCHING: PhasePolicy(min_topic_weight=0.2, exploration_ratio=0.3),
    ColdStartPhase.ADAPTIVE: PhasePolicy(
        min_topic_weight=0.3, exploration_ratio=0.2, introduce_subtopics=True
    ),
    ColdStartPhase.STEADY_STATE: PhasePolicy(min_topic_weight=0.2, exploration_ratio=0.0),
}


def split_quota(count: int, exploration_ratio: float) -> tuple[int, int]:
    """Split ``count`` into (weight-preferred, exploration) slots, rounding half up."""
    explore = int(count * exploration_ratio + 0.5)
    return count - explore, explore


class ColdStartController:
    """Drives feed eligibility and checkpoint refills until cold start completes.

    Phases advance with ``profile.total_answered`` and never go back; once the
    profile is marked complete all selection is delegated to the scoring engine.

    Args:
        scoring: Steady-state engine used in phase 4.
        rng: Random source for exploration picks.
    """

    def __init__(self, scoring: ScoringEngine | None = None, rng: random.Random | None = None):
        self.scoring = scoring or ScoringEngine()
        self.rng = rng or random.Random()
        self._last_phase = ColdStartPhase.EXPLORATION

    def phase(self, profile: Profile) -> ColdStartPhase:
        if profile.cold_start_complete:
            return ColdStartPhase.STEADY_STATE
        return max(self._last_phase, ColdStartPhase.from_answered(profile.total_answered))

    def observe(self, profile: Profile) -> ColdStartPhase:
        """Record the profile's progress; marks cold start complete at the last phase."""
        phase = self.phase(profile)
        if phase > self._last_phase:
            logger.info(
                "cold_start_phase_changed",
                user_id=profile.user_id,
                old_phase=self._last_phase.name,
                new_phase=phase.name,
                total_answered=profile.total_answered,
            )
            self._last_phase = phase
        if phase is ColdStartPhase.STEADY_STATE and not profile.cold_start_complete:
            profile.mark_cold_start_complete()
            logger.info("cold_start_complete", user_id=profile.user_id)
        return phase

    def is_eligible(self, item: CandidateItem, profile: Profile, phase: ColdStartPhase) -> bool:
        policy = PHASE_POLICIES[phase]
        if policy.max_difficulty is not None and item.difficulty.rank > policy.max_difficulty.rank:
            return False
        if policy.min_topic_weight is not None:
            return profile.topic_weight(item.topic) >= policy.min_topic_weight
        return True

    def eligible(
        self,
        candidates: Iterable[CandidateItem],
        profile: Profile,
        phase: ColdStartPhase | None = None,
    ) -> list[CandidateItem]:
        phase = phase or self.phase(profile)
        return [c for c in candidates if self.is_eligible(c, profile, phase)]

    def select_batch(
        self,
        candidates: Iterable[CandidateItem],
        profile: Profile,
        count: int,
        history: Sequence[str] = (),
        exclude_ids: Collection[str] = (),
    ) -> list[CandidateItem]:
        """Choose up to ``count`` eligible items for the current phase.

        Args:
            candidates: Candidate pool.
            profile: Current local profile.
            count: Batch size.
            history: Topics already in the feed, oldest first.
            exclude_ids: Items already present in the feed.
        """
        phase = self.phase(profile)
        pool = [c for c in self.eligible(candidates, profile, phase) if c.id not in exclude_ids]
        if phase is ColdStartPhase.STEADY_STATE:
            return self.scoring.select(pool, profile, count, history)

        policy = PHASE_POLICIES[phase]
        preferred_n, explore_n = split_quota(min(count, len(pool)), policy.exploration_ratio)

        ordered = sorted(pool, key=lambda c: (-topic_affinity(c, profile), c.id))
        if policy.introduce_subtopics:
            fresh = self._fresh_subtopic(pool, profile)
            if fresh is not None:
                ordered.remove(fresh)
                ordered.insert(0, fresh)
        preferred = ordered[:preferred_n]

        chosen_ids = {c.id for c in preferred}
        explore = self._explore([c for c in pool if c.id not in chosen_ids], profile, explore_n)

        logger.debug(
            "cold_start_batch",
            user_id=profile.user_id,
            phase=phase.name,
            eligible=len(pool),
            preferred=len(preferred),
            exploration=len(explore),
        )
        return enforce_topic_diversity(preferred + explore, history)

    def checkpoint(
        self,
        position: int,
        feed: Sequence[CandidateItem],
        candidates: Iterable[CandidateItem],
        profile: Profile,
        count: int,
    ) -> list[CandidateItem]:
        """Items to append when the user reaches ``position``; empty off-checkpoint."""
        if position not in CHECKPOINT_POSITIONS:
            return []
        batch = self.select_batch(
            candidates,
            profile,
            count,
            history=[item.topic for item in feed],
            exclude_ids={item.id for item in feed},
        )
        logger.info(
            "cold_start_checkpoint",
            user_id=profile.user_id,
            position=position,
            phase=self.phase(profile).name,
            added=len(batch),
        )
        return batch

    def _explore(
        self, pool: list[CandidateItem], profile: Profile, count: int
    ) -> list[CandidateItem]:
        """Random picks, topics the profile has never seen first."""
        if count <= 0:
            return []
        unseen = [c for c in pool if c.topic not in profile.topics]
        seen = [c for c in pool if c.topic in profile.topics]
        self.rng.shuffle(unseen)
        self.rng.shuffle(seen)
        return (unseen + seen)[:count]

    @staticmethod
    def _fresh_subtopic(pool: list[CandidateItem], profile: Profile) -> CandidateItem | None:
        """Best item opening a new subtopic inside a topic the user already likes."""
        fresh = [
            c for c in pool
            if c.topic in profile.topics
            and profile.topic_weight(c.topic) >= DEFAULT_WEIGHT
            and not profile.has_subtopic(c.topic, c.subtopic)
        ]
        if not fresh:
            return None
        return max(fresh, key=lambda c: (profile.topic_weight(c.topic), c.id))
