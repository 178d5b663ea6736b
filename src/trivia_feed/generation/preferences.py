"""Derive content-generation preferences from an interest profile."""

from collections import Counter
from collections.abc import Sequence

from pydantic import BaseModel, Field

from trivia_feed.models.item import CandidateItem
from trivia_feed.models.profile import DEFAULT_WEIGHT, Profile

DEFAULT_CATALOG: tuple[str, ...] = (
    "Science", "History", "Geography", "Arts", "Literature", "Music",
    "Sports", "Technology", "Nature", "Film", "Food", "Pop Culture",
)

MAX_PRIMARY_TOPICS = 5
MAX_PREFERRED_NODES = 5
MAX_PREFERRED_TAGS = 8
MAX_RECENT_QUESTIONS = 10
MAX_HIERARCHY_HINTS = 3
MIN_ADJACENT_WEIGHT = 0.2


class GenerationPreferences(BaseModel):
    """Input contract for the content-generation service."""

    primary_topics: list[str] = Field(default_factory=list)
    adjacent_topics: list[str] = Field(default_factory=list)
    preferred_subtopics: list[str] = Field(default_factory=list)
    preferred_branches: list[str] = Field(default_factory=list)
    preferred_tags: list[str] = Field(default_factory=list)
    hierarchy_hints: list[str] = Field(default_factory=list)  # "Topic:Subtopic"
    recent_questions: list[str] = Field(default_factory=list)


def _unique(names: list[str], limit: int) -> list[str]:
    return list(dict.fromkeys(names))[:limit]


def extract_preferences(
    profile: Profile,
    catalog_topics: Sequence[str] = DEFAULT_CATALOG,
    recent_items: Sequence[CandidateItem] = (),
) -> GenerationPreferences:
    """Build generation preferences, strongest interests first.

    Args:
        profile: Local profile.
        catalog_topics: Topics the generator is allowed to cover.
        recent_items: Items recently shown, oldest first.
    """
    ranked_topics = sorted(profile.topics.items(), key=lambda kv: (-kv[1].weight, kv[0]))
    primary = [name for name, node in ranked_topics if node.weight > DEFAULT_WEIGHT]
    primary = primary[:MAX_PRIMARY_TOPICS] or list(catalog_topics[:3])

    adjacent = [
        t for t in catalog_topics
        if t not in primary and profile.topic_weight(t) >= MIN_ADJACENT_WEIGHT
    ]

    subtopics: list[tuple[float, str, str]] = []
    branches: list[tuple[float, str]] = []
    for path, node in profile.iter_nodes():
        if node.weight <= DEFAULT_WEIGHT:
            continue
        if len(path) == 2:
            subtopics.append((node.weight, path[0], path[1]))
        elif len(path) == 3:
            branches.append((node.weight, path[2]))
    subtopics.sort(key=lambda s: (-s[0], s[1], s[2]))
    branches.sort(key=lambda b: (-b[0], b[1]))

    tag_counts: Counter[str] = Counter()
    for item in recent_items:
        interaction = profile.interactions.get(item.id)
        if interaction is not None and interaction.was_correct is not None:
            tag_counts.update(tag.lower() for tag in item.tags)

    recent_questions = [item.question for item in recent_items][-MAX_RECENT_QUESTIONS:]

    return GenerationPreferences(
        primary_topics=primary,
        adjacent_topics=adjacent,
        preferred_subtopics=_unique([s[2] for s in subtopics], MAX_PREFERRED_NODES),
        preferred_branches=_unique([b[1] for b in branches], MAX_PREFERRED_NODES),
        preferred_tags=[tag for tag, _ in tag_counts.most_common(MAX_PREFERRED_TAGS)],
        hierarchy_hints=_unique([f"{s[1]}:{s[2]}" for s in subtopics], MAX_HIERARCHY_HINTS),
        recent_questions=list(reversed(recent_questions)),
    )
