"""User interest profile: a topic -> subtopic -> branch weight tree plus an interaction log."""

import time
from collections.abc import Iterator

from pydantic import BaseModel, Field, field_validator

from trivia_feed.errors import ProfileValidationError

DEFAULT_WEIGHT = 0.5
MIN_WEIGHT = 0.1
MAX_WEIGHT = 1.0


def now_ms() -> int:
    """Wall clock in milliseconds."""
    return int(time.time() * 1000)


def clamp_weight(value: float) -> float:
    """Clamp a weight into [MIN_WEIGHT, MAX_WEIGHT].

    Rounded to 4 places so repeated +/- deltas do not drift.
    """
    return round(min(MAX_WEIGHT, max(MIN_WEIGHT, value)), 4)


class WeightNode(BaseModel):
    """A node of the interest tree. All weight writes go through ``adjust``."""

    weight: float = DEFAULT_WEIGHT
    last_viewed: int | None = None

    @field_validator("weight", mode="before")
    @classmethod
    def _clamp(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"weight must be a number, got {value!r}")
        return clamp_weight(float(value))

    def adjust(self, delta: float, now: int) -> float:
        """Apply ``delta`` with read-clamp-write and stamp ``last_viewed``."""
        self.weight = clamp_weight(self.weight + delta)
        self.last_viewed = now
        return self.weight

    @property
    def is_default(self) -> bool:
        return self.weight == DEFAULT_WEIGHT


class Branch(WeightNode):
    pass


class SubTopic(WeightNode):
    branches: dict[str, Branch] = Field(default_factory=dict)

    def branch(self, name: str) -> Branch:
        node = self.branches.get(name)
        if node is None:
            node = self.branches[name] = Branch()
        return node


class RootTopic(WeightNode):
    subtopics: dict[str, SubTopic] = Field(default_factory=dict)

    def subtopic(self, name: str) -> SubTopic:
        node = self.subtopics.get(name)
        if node is None:
            node = self.subtopics[name] = SubTopic()
        return node


class Interaction(BaseModel):
    """Latest recorded outcome for one item. Updated in place on later events."""

    item_id: str
    was_correct: bool | None = None
    was_skipped: bool = False
    time_spent_ms: int = Field(default=0, ge=0)
    viewed_at: int = 0


class Profile(BaseModel):
    """Per-user personalization aggregate."""

    user_id: str
    topics: dict[str, RootTopic] = Field(default_factory=dict)
    interactions: dict[str, Interaction] = Field(default_factory=dict)
    last_refreshed: int = Field(default=0, ge=0)
    total_answered: int = Field(default=0, ge=0)
    cold_start_complete: bool = False
    version: int = Field(default=0, ge=0)

    @field_validator("user_id")
    @classmethod
    def _require_user_id(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("user_id must not be empty")
        return value

    def path(self, topic: str, subtopic: str, branch: str) -> tuple[RootTopic, SubTopic, Branch]:
        """Return the three nodes addressed by the labels, creating any that are missing."""
        root = self.topics.get(topic)
        if root is None:
            root = self.topics[topic] = RootTopic()
        sub = root.subtopic(subtopic)
        return root, sub, sub.branch(branch)

    def topic_weight(self, topic: str) -> float:
        root = self.topics.get(topic)
        return root.weight if root else DEFAULT_WEIGHT

    def subtopic_weight(self, topic: str, subtopic: str) -> float:
        root = self.topics.get(topic)
        sub = root.subtopics.get(subtopic) if root else None
        return sub.weight if sub else DEFAULT_WEIGHT

    def branch_weight(self, topic: str, subtopic: str, branch: str) -> float:
        root = self.topics.get(topic)
        sub = root.subtopics.get(subtopic) if root else None
        node = sub.branches.get(branch) if sub else None
        return node.weight if node else DEFAULT_WEIGHT

    def has_subtopic(self, topic: str, subtopic: str) -> bool:
        root = self.topics.get(topic)
        return root is not None and subtopic in root.subtopics

    def has_branch(self, topic: str, subtopic: str, branch: str) -> bool:
        root = self.topics.get(topic)
        sub = root.subtopics.get(subtopic) if root else None
        return sub is not None and branch in sub.branches

    def iter_nodes(self) -> Iterator[tuple[tuple[str, ...], WeightNode]]:
        """Yield every node of the tree with its label path."""
        for topic, root in self.topics.items():
            yield (topic,), root
            for sub_name, sub in root.subtopics.items():
                yield (topic, sub_name), sub
                for branch_name, node in sub.branches.items():
                    yield (topic, sub_name, branch_name), node

    def has_all_default_weights(self) -> bool:
        """True when no node carries personalization signal (an empty tree counts)."""
        return all(node.is_default for _, node in self.iter_nodes())

    def touch(self, now: int) -> None:
        """Advance ``last_refreshed``; never moves it backwards."""
        self.last_refreshed = max(self.last_refreshed, now)

    def mark_cold_start_complete(self) -> None:
        self.cold_start_complete = True

    def adopt(self, other: "Profile") -> None:
        """Replace this profile's contents with ``other`` in place.

        The object identity is kept so that collaborators holding a reference
        keep seeing the live profile. Monotonic counters never move backwards.
        """
        if other.user_id != self.user_id:
            raise ProfileValidationError(
                f"cannot adopt profile of {other.user_id} into {self.user_id}"
            )
        replacement = other.model_copy(deep=True)
        replacement.last_refreshed = max(self.last_refreshed, other.last_refreshed)
        replacement.total_answered = max(self.total_answered, other.total_answered)
        replacement.cold_start_complete = self.cold_start_complete or other.cold_start_complete
        for name in type(self).model_fields:
            setattr(self, name, getattr(replacement, name))
