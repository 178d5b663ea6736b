"""Candidate feed items and interaction outcomes."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class Outcome(StrEnum):
    """What the user did with an item."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"

    @property
    def is_answer(self) -> bool:
        return self is not Outcome.SKIPPED


class Difficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> "Difficulty":
        """Lenient parse for generator output; unknown values map to MEDIUM."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.MEDIUM


_DIFFICULTY_RANK = {Difficulty.EASY: 0, Difficulty.MEDIUM: 1, Difficulty.HARD: 2}


class Answer(BaseModel):
    text: str
    is_correct: bool = False


class CandidateItem(BaseModel):
    """A trivia question tagged with its place in the interest hierarchy."""

    id: str
    question: str
    topic: str
    subtopic: str
    branch: str
    tags: list[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    answers: list[Answer] = Field(default_factory=list)
    learning_capsule: str = ""
    fingerprint: str | None = None

    @field_validator("id", "topic", "subtopic", "branch")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value
