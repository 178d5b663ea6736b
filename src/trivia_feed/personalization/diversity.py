"""Topic-diversity ordering shared by the cold-start and steady-state feeds."""

from collections.abc import Iterable, Sequence

from trivia_feed.models.item import CandidateItem

MAX_CONSECUTIVE_SAME_TOPIC = 2


def trailing_run(topics: Sequence[str], topic: str) -> int:
    """Number of entries at the end of ``topics`` equal to ``topic``."""
    run = 0
    for existing in reversed(topics):
        if existing != topic:
            break
        run += 1
    return run


def enforce_topic_diversity(
    items: Iterable[CandidateItem],
    history: Sequence[str] = (),
    max_consecutive: int = MAX_CONSECUTIVE_SAME_TOPIC,
) -> list[CandidateItem]:
    """Reorder ``items`` so no topic appears more than ``max_consecutive`` times in a row.

    A violating item is deferred to the first later position where it fits;
    nothing is dropped. When every remaining item would violate the limit the
    earliest one is placed anyway.

    Args:
        items: Items in preference order.
        history: Topics already shown, oldest first.
        max_consecutive: Longest allowed same-topic run.
    """
    pending = list(items)
    tail = list(history)
    ordered: list[CandidateItem] = []
    while pending:
        pick = 0
        for idx, item in enumerate(pending):
            if trailing_run(tail, item.topic) < max_consecutive:
                pick = idx
                break
        item = pending.pop(pick)
        ordered.append(item)
        tail.append(item.topic)
    return ordered
