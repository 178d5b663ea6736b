"""Weight model: applies answer/skip outcomes to the profile's interest tree."""

import structlog

from trivia_feed.models.item import CandidateItem, Outcome
from trivia_feed.models.profile import Interaction, Profile, now_ms

logger = structlog.get_logger()

# (topic, subtopic, branch) deltas per outcome
OUTCOME_DELTAS: dict[Outcome, tuple[float, float, float]] = {
    Outcome.CORRECT: (0.10, 0.15, 0.20),
    Outcome.INCORRECT: (0.05, 0.07, 0.10),
    Outcome.SKIPPED: (-0.05, -0.07, -0.10),
}

# Used instead of OUTCOME_DELTAS when the item's last recorded outcome was a skip
COMPENSATION_DELTAS: dict[Outcome, tuple[float, float, float]] = {
    Outcome.CORRECT: (0.05, 0.07, 0.10),
    Outcome.INCORRECT: (0.03, 0.04, 0.05),
}


def deltas_for(outcome: Outcome, previous: Interaction | None) -> tuple[float, float, float]:
    """Pick the delta triple for ``outcome`` given the item's prior interaction."""
    if outcome.is_answer and previous is not None and previous.was_skipped:
        return COMPENSATION_DELTAS[outcome]
    return OUTCOME_DELTAS[outcome]


def apply_outcome(
    profile: Profile,
    item: CandidateItem,
    outcome: Outcome,
    time_spent_ms: int,
    now: int | None = None,
) -> Interaction:
    """Mutate ``profile`` in place for one interaction event.

    Args:
        profile: Live profile owned by the session.
        item: The item the user interacted with.
        outcome: Correct, incorrect or skipped.
        time_spent_ms: Time the item was on screen.
        now: Event timestamp in ms (defaults to wall clock).

    Returns:
        The upserted interaction record.
    """
    if time_spent_ms < 0:
        raise ValueError("time_spent_ms must be non-negative")
    now = now_ms() if now is None else now

    previous = profile.interactions.get(item.id)
    topic_delta, subtopic_delta, branch_delta = deltas_for(outcome, previous)
    compensated = outcome.is_answer and previous is not None and previous.was_skipped

    root, sub, branch = profile.path(item.topic, item.subtopic, item.branch)
    root.adjust(topic_delta, now)
    sub.adjust(subtopic_delta, now)
    branch.adjust(branch_delta, now)

    if previous is None:
        interaction = Interaction(item_id=item.id, viewed_at=now)
        profile.interactions[item.id] = interaction
    else:
        interaction = previous
    interaction.viewed_at = now
    interaction.time_spent_ms = time_spent_ms
    interaction.was_skipped = outcome is Outcome.SKIPPED
    if outcome.is_answer:
        interaction.was_correct = outcome is Outcome.CORRECT
        profile.total_answered += 1

    profile.touch(now)

    logger.debug(
        "outcome_applied",
        user_id=profile.user_id,
        item_id=item.id,
        outcome=outcome.value,
        compensated=compensated,
        topic_weight=root.weight,
        subtopic_weight=sub.weight,
        branch_weight=branch.weight,
    )
    return interaction
