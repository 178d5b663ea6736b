"""Steady-state scoring engine: ranks candidates against the interest profile."""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import structlog

from trivia_feed.models.item import CandidateItem
from trivia_feed.models.profile import Interaction, Profile, now_ms
from trivia_feed.personalization.diversity import (
    MAX_CONSECUTIVE_SAME_TOPIC,
    enforce_topic_diversity,
    trailing_run,
)

logger = structlog.get_logger()

MS_PER_DAY = 86_400_000

TOPIC_AFFINITY_WEIGHT = 0.30
ACCURACY_BONUS = 0.25
FAST_ANSWER_MS = 3_000
SLOW_ANSWER_MS = 15_000
TIME_BONUS = 0.15
SKIP_PENALTY = 0.20
COOLDOWN_PER_DAY = 0.10
MAX_COOLDOWN_BONUS = 0.5
NOVELTY_BONUS = 0.15
REPEAT_TOPIC_PENALTY = 0.25


class Novelty(StrEnum):
    """Where an item sits relative to what the profile has already seen."""

    NEW_TOPIC = "new_topic"
    NEW_SUBTOPIC = "new_subtopic"
    NEW_BRANCH = "new_branch"
    KNOWN = "known"


# Share of the final selection reserved for each kind of unexplored item
EXPLORATION_QUOTAS: tuple[tuple[Novelty, float], ...] = (
    (Novelty.NEW_TOPIC, 0.05),
    (Novelty.NEW_SUBTOPIC, 0.10),
    (Novelty.NEW_BRANCH, 0.15),
)


def novelty_of(item: CandidateItem, profile: Profile) -> Novelty:
    if item.topic not in profile.topics:
        return Novelty.NEW_TOPIC
    if not profile.has_subtopic(item.topic, item.subtopic):
        return Novelty.NEW_SUBTOPIC
    if not profile.has_branch(item.topic, item.subtopic, item.branch):
        return Novelty.NEW_BRANCH
    return Novelty.KNOWN


def quota_slots(size: int, share: float) -> int:
    """Slots for ``share`` of ``size``, rounded half up."""
    return int(size * share + 0.5)


def topic_affinity(item: CandidateItem, profile: Profile) -> float:
    """Mean of topic, subtopic and branch weights (unseen nodes count as default)."""
    return (
        profile.topic_weight(item.topic)
        + profile.subtopic_weight(item.topic, item.subtopic)
        + profile.branch_weight(item.topic, item.subtopic, item.branch)
    ) / 3


def interaction_term(interaction: Interaction, reference: int) -> float:
    accuracy = 0.0
    if interaction.was_correct is True:
        accuracy = ACCURACY_BONUS
    elif interaction.was_correct is False:
        accuracy = -ACCURACY_BONUS

    time_bonus = 0.0
    if interaction.time_spent_ms < FAST_ANSWER_MS:
        time_bonus = TIME_BONUS
    elif interaction.time_spent_ms > SLOW_ANSWER_MS:
        time_bonus = -TIME_BONUS

    skip_penalty = -SKIP_PENALTY if interaction.was_skipped else 0.0

    days_since_viewed = max(0, reference - interaction.viewed_at) / MS_PER_DAY
    cooldown = min(COOLDOWN_PER_DAY * days_since_viewed, MAX_COOLDOWN_BONUS)

    return accuracy + time_bonus + skip_penalty + cooldown


def score(item: CandidateItem, profile: Profile, now: int | None = None) -> float:
    """Score one candidate. Pure: depends only on its arguments.

    Args:
        item: Candidate item.
        profile: Profile to score against.
        now: Reference time for the cooldown bonus; defaults to
            ``profile.last_refreshed``.
    """
    reference = profile.last_refreshed if now is None else now
    value = TOPIC_AFFINITY_WEIGHT * topic_affinity(item, profile)
    interaction = profile.interactions.get(item.id)
    if interaction is None:
        return value + NOVELTY_BONUS
    return value + interaction_term(interaction, reference)


@dataclass(frozen=True)
class ScoredItem:
    item: CandidateItem
    score: float
    last_viewed: int  # -1 when never seen

    @property
    def sort_key(self) -> tuple[float, int, str]:
        return (-self.score, self.last_viewed, self.item.id)


class ScoringEngine:
    """Ranks and selects steady-state feed items.

    Selection is greedy over the ranked list: a candidate that would extend a
    same-topic run past the limit is scored down by ``repeat_topic_penalty``.
    A share of the final selection is then reserved for unexplored topics,
    subtopics and branches.

    Args:
        clock: Millisecond clock used as the cooldown reference.
        repeat_topic_penalty: Score subtracted from run-extending candidates.
    """

    def __init__(
        self,
        clock: Callable[[], int] = now_ms,
        repeat_topic_penalty: float = REPEAT_TOPIC_PENALTY,
    ):
        self.clock = clock
        self.repeat_topic_penalty = repeat_topic_penalty

    def rank(self, candidates: Iterable[CandidateItem], profile: Profile) -> list[ScoredItem]:
        """Score every candidate and sort descending; ties go to the least recently seen."""
        now = self.clock()
        scored = []
        for item in candidates:
            interaction = profile.interactions.get(item.id)
            scored.append(ScoredItem(
                item=item,
                score=score(item, profile, now),
                last_viewed=interaction.viewed_at if interaction else -1,
            ))
        scored.sort(key=lambda s: s.sort_key)
        return scored

    def select(
        self,
        candidates: Iterable[CandidateItem],
        profile: Profile,
        count: int,
        history: Sequence[str] = (),
    ) -> list[CandidateItem]:
        """Pick ``count`` items for the feed.

        Args:
            candidates: Eligible candidates.
            profile: Current local profile.
            count: Number of items wanted.
            history: Topics already in the feed, oldest first.
        """
        if count <= 0:
            return []
        ranked = self.rank(candidates, profile)
        picks = self._pick_with_diversity(ranked, count, history)
        picks = self._reserve_exploration(picks, ranked, profile, history)
        logger.debug(
            "steady_state_selection",
            user_id=profile.user_id,
            candidates=len(ranked),
            selected=len(picks),
        )
        return enforce_topic_diversity([p.item for p in picks], history)

    def _pick_with_diversity(
        self, ranked: list[ScoredItem], count: int, history: Sequence[str]
    ) -> list[ScoredItem]:
        remaining = list(ranked)
        topics = list(history)
        picks: list[ScoredItem] = []
        while remaining and len(picks) < count:
            best_idx = 0
            best_value = float("-inf")
            for idx, candidate in enumerate(remaining):
                value = candidate.score
                if trailing_run(topics, candidate.item.topic) >= MAX_CONSECUTIVE_SAME_TOPIC:
                    value -= self.repeat_topic_penalty
                if value > best_value:
                    best_idx, best_value = idx, value
            chosen = remaining.pop(best_idx)
            picks.append(chosen)
            topics.append(chosen.item.topic)
        return picks

    @staticmethod
    def _reserve_exploration(
        picks: list[ScoredItem],
        ranked: list[ScoredItem],
        profile: Profile,
        history: Sequence[str] = (),
    ) -> list[ScoredItem]:
        selected = list(picks)
        selected_ids = {p.item.id for p in selected}
        reserved: set[str] = set()
        size = len(selected)

        for kind, share in EXPLORATION_QUOTAS:
            slots = quota_slots(size, share)
            if not slots:
                continue
            present = [
                p for p in selected
                if p.item.id not in reserved and novelty_of(p.item, profile) is kind
            ][:slots]
            reserved.update(p.item.id for p in present)
            missing = slots - len(present)
            if missing <= 0:
                continue

            extras = [
                s for s in ranked
                if s.item.id not in selected_ids and novelty_of(s.item, profile) is kind
            ][:missing]
            for extra in extras:
                victim_idx = _victim_index(selected, reserved, extra, history)
                if victim_idx is None:
                    break
                victim = selected[victim_idx]
                selected[victim_idx] = extra
                selected_ids.discard(victim.item.id)
                selected_ids.add(extra.item.id)
                reserved.add(extra.item.id)
                logger.debug(
                    "exploration_slot_reserved",
                    kind=kind.value,
                    item_id=extra.item.id,
                    replaced=victim.item.id,
                )
        return selected


def _exceeds_topic_run(topics: Sequence[str]) -> bool:
    run, previous = 0, None
    for topic in topics:
        run = run + 1 if topic == previous else 1
        previous = topic
        if run > MAX_CONSECUTIVE_SAME_TOPIC:
            return True
    return False


def _victim_index(
    selected: list[ScoredItem],
    reserved: set[str],
    extra: ScoredItem,
    history: Sequence[str],
) -> int | None:
    """Lowest-ranked unreserved pick whose slot ``extra`` can take without a long topic run.

    Falls back to the lowest-ranked unreserved pick when every swap would
    lengthen a run.
    """
    tail = list(history)[-MAX_CONSECUTIVE_SAME_TOPIC:]
    fallback = None
    for idx in range(len(selected) - 1, -1, -1):
        if selected[idx].item.id in reserved:
            continue
        if fallback is None:
            fallback = idx
        topics = [p.item.topic for p in selected]
        topics[idx] = extra.item.topic
        if not _exceeds_topic_run(tail + topics):
            return idx
    return fallback
