"""LLM-backed question generation for replenishing the candidate pool."""

import json
import uuid

import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError

from trivia_feed.generation.fingerprint import question_fingerprint
from trivia_feed.generation.preferences import GenerationPreferences
from trivia_feed.models.item import Answer, CandidateItem, Difficulty

logger = structlog.get_logger()

MAX_GENERATED_ITEMS = 20

GENERATION_SYSTEM_PROMPT = """\
You write multiple-choice trivia questions for a personalized trivia feed.

Every question must be tagged with a main topic, a specific subtopic within \
that topic, and a precise branch within that subtopic, plus 3-5 tags that \
describe its content. Favour the user's primary topics in the order given, \
use the adjacent topics for roughly half of the questions, and prefer the \
listed subtopics, branches and tags. Never repeat or paraphrase a recent question, \
and never ask two questions about the same fact in one batch.

Respond ONLY with a JSON object:
{
    "questions": [
        {
            "question": "<question text>",
            "answers": [{"text": "<answer>", "isCorrect": true}, ...4 answers total],
            "category": "<topic>",
            "subtopic": "<subtopic>",
            "branch": "<branch>",
            "difficulty": "easy|medium|hard",
            "learningCapsule": "<one or two sentences of context>",
            "tags": ["<tag>", ...]
        }
    ]
}
"""


def _format_preferences(preferences: GenerationPreferences, count: int) -> str:
    lines = [
        f"Number of questions: {count}",
        f"Primary topics (priority order): {', '.join(preferences.primary_topics)}",
        f"Adjacent topics: {', '.join(preferences.adjacent_topics)}",
    ]
    if preferences.preferred_subtopics:
        lines.append(f"Preferred subtopics: {', '.join(preferences.preferred_subtopics)}")
    if preferences.preferred_branches:
        lines.append(f"Preferred branches: {', '.join(preferences.preferred_branches)}")
    if preferences.hierarchy_hints:
        lines.append(
            "Use these exact topic:subtopic pairs at least once: "
            + ", ".join(preferences.hierarchy_hints)
        )
    if preferences.preferred_tags:
        lines.append(f"Preferred tags: {', '.join(preferences.preferred_tags)}")
    if preferences.recent_questions:
        lines.append("Recent questions to avoid:")
        lines.extend(f"{i}. {q}" for i, q in enumerate(preferences.recent_questions, start=1))
    return "\n".join(lines)


def parse_generated_items(raw: list[dict]) -> list[CandidateItem]:
    """Convert generator JSON into candidate items, skipping malformed entries."""
    items: list[CandidateItem] = []
    for entry in raw[:MAX_GENERATED_ITEMS]:
        try:
            question = str(entry["question"])
            tags = [str(t) for t in entry.get("tags", [])]
            items.append(CandidateItem(
                id=str(uuid.uuid4()),
                question=question,
                topic=str(entry.get("category") or entry.get("topic") or ""),
                subtopic=str(entry.get("subtopic", "")),
                branch=str(entry.get("branch", "")),
                tags=tags,
                difficulty=Difficulty.parse(entry.get("difficulty")),
                answers=[
                    Answer(text=str(a.get("text", "")), is_correct=bool(a.get("isCorrect")))
                    for a in entry.get("answers", [])
                ],
                learning_capsule=str(entry.get("learningCapsule", "")),
                fingerprint=question_fingerprint(question, tags),
            ))
        except (KeyError, TypeError, AttributeError, ValidationError):
            logger.warning("generated_item_invalid", entry=entry)
    return items


class QuestionGenerator:
    """Requests new candidate items from an OpenAI chat model.

    Args:
        api_key: OpenAI API key.
        model: Model to use for generation.
        batch_size: Questions requested per call.
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", batch_size: int = 12):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.batch_size = min(batch_size, MAX_GENERATED_ITEMS)

    async def generate(self, preferences: GenerationPreferences) -> list[CandidateItem]:
        """Generate a bounded batch of candidates.

        Args:
            preferences: Topics, hierarchy and tags to favour.

        Returns:
            Parsed candidate items; empty when the call fails.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": GENERATION_SYSTEM_PROMPT},
                    {"role": "user", "content": _format_preferences(preferences, self.batch_size)},
                ],
                temperature=0.8,
                response_format={"type": "json_object"},
            )
            payload = json.loads(response.choices[0].message.content)
            items = parse_generated_items(payload.get("questions", []))
            logger.info(
                "questions_generated",
                requested=self.batch_size,
                received=len(items),
                primary_topics=preferences.primary_topics,
            )
            return items

        except Exception:
            logger.exception("question_generation_failed")
            return []
