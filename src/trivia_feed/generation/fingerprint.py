"""Question fingerprints for duplicate detection across generated batches."""

import re

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_CAPITALISED = re.compile(r"^[A-Z][a-z]+")
_SENTENCE_END = re.compile(r"[.!?]$")
_QUOTED = re.compile(r"'([^']+)'|\"([^\"]+)\"|‘([^’]+)’|“([^”]+)”")
_COMMON_WORDS = {
    "the", "a", "an", "in", "on", "of", "for", "and", "but", "or", "not",
    "is", "are", "was", "were", "be", "been", "being",
}
_TEMPORAL_VERBS = re.compile(
    r"\b(occur|happened|established|founded|created|built|launched|released|started)\b"
)
_KNOWN_FOR = re.compile(r"\b(known|famous|recognized|remembered|celebrated)\s+(for|as)\b")
_CREATION_VERBS = re.compile(r"\b(paint|wrote|directed|composed|created|designed|built|constructed)\b")

# Word-set difference at or below which two questions count as the same
NEAR_DUPLICATE_WORD_DIFF = 3
# Enhanced-fingerprint similarity above which two questions count as the same
SEMANTIC_DUPLICATE_THRESHOLD = 0.75


def normalize_question(question: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _PUNCTUATION.sub("", question.lower())
    return _WHITESPACE.sub(" ", text).strip()


def _normalize_tags(tags: list[str]) -> str:
    return "|".join(sorted(tags)).lower()


def question_fingerprint(question: str, tags: list[str]) -> str:
    """Normalized text plus sorted tags: ``text|tag1|tag2``."""
    return f"{normalize_question(question)}|{_normalize_tags(tags)}"


def question_intent(question: str) -> str:
    """Coarse intent of a question (temporal, spatial, person, ...)."""
    if not question:
        return "unknown"
    text = question.lower()

    if ("year" in text or "date" in text or "when" in text) and _TEMPORAL_VERBS.search(text):
        return "temporal"
    if (
        "where" in text or "location" in text or "place" in text
        or ("which" in text and any(
            w in text for w in ("country", "city", "continent", "region", "located")
        ))
    ):
        return "spatial"
    if "who" in text or ("which" in text and any(
        w in text for w in ("person", "individual", "actor", "actress", "scientist", "artist")
    )):
        return "person"
    if any(w in text for w in ("how many", "how much", "number of", "amount of",
                               "percentage", "proportion")):
        return "quantitative"
    if _KNOWN_FOR.search(text):
        return "attribute"
    if _CREATION_VERBS.search(text):
        return "creation"

    for word, intent in (("what", "definition"), ("which", "selection"),
                         ("why", "causation"), ("how", "process")):
        if word in text:
            return intent
    return "unknown"


def named_entities(text: str) -> list[str]:
    """Capitalised word runs (not sentence-initial) and quoted phrases, lowercased."""
    if not text:
        return []
    entities: list[str] = []
    words = text.split()
    current: list[str] = []
    for i, word in enumerate(words):
        sentence_start = i == 0 or bool(_SENTENCE_END.search(words[i - 1]))
        if (
            _CAPITALISED.match(word)
            and not sentence_start
            and word.lower() not in _COMMON_WORDS
        ):
            current.append(word)
        elif current:
            entities.append(" ".join(current).lower())
            current = []
    if current:
        entities.append(" ".join(current).lower())

    for match in _QUOTED.finditer(text):
        entity = next((g for g in match.groups() if g), "")
        if len(entity) > 2:
            entities.append(entity.lower())

    return list(dict.fromkeys(entities))


def enhanced_fingerprint(question: str, tags: list[str] | None = None) -> str:
    """Fingerprint carrying intent and entities ahead of the plain fingerprint.

    Layout: ``intent||entity1;entity2||normalized text||tag1;tag2``.
    """
    entities = ";".join(named_entities(question))
    tag_part = ";".join(sorted(tags or [])).lower()
    return "||".join([question_intent(question), entities, normalize_question(question), tag_part])


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, in [0, 1]."""
    a, b = a.lower().strip(), b.lower().strip()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j - 1] + cost, current[j - 1] + 1, previous[j] + 1))
        previous = current
    return 1 - previous[-1] / max(len(a), len(b))


def _overlap(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    a, b = left.split(";"), right.split(";")
    common = [x for x in a if x in b]
    return len(common) / max(len(a), len(b))


def fingerprint_similarity(fp1: str, fp2: str) -> float:
    """Weighted similarity of two enhanced fingerprints."""
    if not fp1 or not fp2:
        return 0.0
    intent1, entities1, text1, tags1 = (fp1.split("||", 3) + ["", "", "", ""])[:4]
    intent2, entities2, text2, tags2 = (fp2.split("||", 3) + ["", "", "", ""])[:4]
    return (
        0.5 * levenshtein_similarity(text1, text2)
        + 0.3 * _overlap(entities1, entities2)
        + 0.1 * (1.0 if intent1 == intent2 else 0.0)
        + 0.1 * _overlap(tags1, tags2)
    )


def is_near_duplicate(normalized_a: str, normalized_b: str) -> bool:
    """Two normalized questions differing by at most a few words."""
    words_a, words_b = set(normalized_a.split()), set(normalized_b.split())
    return len(words_a ^ words_b) <= NEAR_DUPLICATE_WORD_DIFF


class FingerprintIndex:
    """Remembers seen questions and rejects exact, near or reworded duplicates."""

    def __init__(self, threshold: float = SEMANTIC_DUPLICATE_THRESHOLD) -> None:
        self.threshold = threshold
        self._fingerprints: set[str] = set()
        self._texts: list[str] = []
        self._enhanced: list[str] = []

    def __len__(self) -> int:
        return len(self._fingerprints)

    def is_duplicate(self, question: str, tags: list[str]) -> bool:
        if question_fingerprint(question, tags) in self._fingerprints:
            return True
        normalized = normalize_question(question)
        if any(is_near_duplicate(normalized, seen) for seen in self._texts):
            return True
        enhanced = enhanced_fingerprint(question, tags)
        return any(fingerprint_similarity(enhanced, seen) > self.threshold for seen in self._enhanced)

    def add(self, question: str, tags: list[str]) -> bool:
        """Index a question. Returns False (and indexes nothing) for a duplicate."""
        if self.is_duplicate(question, tags):
            return False
        self._fingerprints.add(question_fingerprint(question, tags))
        self._texts.append(normalize_question(question))
        self._enhanced.append(enhanced_fingerprint(question, tags))
        return True
