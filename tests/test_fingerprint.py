"""Tests for question fingerprinting and duplicate detection."""

import pytest

from trivia_feed.generation.fingerprint import (
    FingerprintIndex,
    enhanced_fingerprint,
    fingerprint_similarity,
    is_near_duplicate,
    levenshtein_similarity,
    named_entities,
    normalize_question,
    question_fingerprint,
    question_intent,
)


def test_normalize_question():
    assert normalize_question("  What's the  Capital of France?! ") == "whats the capital of france"


def test_question_fingerprint_sorts_tags():
    fp = question_fingerprint("Who painted the Mona Lisa?", ["Renaissance", "Art"])
    assert fp == "who painted the mona lisa|art|renaissance"


@pytest.mark.parametrize(
    "question, intent",
    [
        ("In what year was the Eiffel Tower built?", "temporal"),
        ("Where is Machu Picchu?", "spatial"),
        ("Who discovered penicillin?", "person"),
        ("How many moons does Mars have?", "quantitative"),
        ("What is Marie Curie famous for?", "attribute"),
        ("What is photosynthesis?", "definition"),
        ("Why is the sky blue?", "causation"),
        ("", "unknown"),
    ],
)
def test_question_intent(question, intent):
    assert question_intent(question) == intent


def test_named_entities():
    entities = named_entities("Which planet did Galileo Galilei observe with the 'Starry Messenger' telescope?")
    assert "galileo galilei" in entities
    assert "starry messenger" in entities
    assert "which" not in entities


def test_enhanced_fingerprint_layout():
    fp = enhanced_fingerprint("Who wrote Hamlet?", ["Drama", "Shakespeare"])
    intent, entities, text, tags = fp.split("||")
    assert intent == "person"
    assert entities == "hamlet?"
    assert text == "who wrote hamlet"
    assert tags == "drama;shakespeare"


def test_levenshtein_similarity():
    assert levenshtein_similarity("kitten", "kitten") == 1.0
    assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
    assert levenshtein_similarity("", "abc") == 0.0


def test_fingerprint_similarity_weights():
    a = enhanced_fingerprint("Who wrote Hamlet?", ["drama"])
    assert fingerprint_similarity(a, a) == pytest.approx(1.0)
    b = enhanced_fingerprint("How many moons does Mars have?", ["space"])
    assert fingerprint_similarity(a, b) < 0.5
    assert fingerprint_similarity("", a) == 0.0


def test_near_duplicate_word_difference():
    assert is_near_duplicate("what is the capital of france", "what is the capital city of france")
    assert not is_near_duplicate("what is the capital of france", "who painted the sistine chapel ceiling")


class TestFingerprintIndex:
    def test_rejects_exact_and_near_duplicates(self):
        index = FingerprintIndex()
        assert index.add("What is the capital of France?", ["geo"])
        assert not index.add("What is the capital of France?", ["geo"])
        assert not index.add("What is the capital city of France?", ["europe"])
        assert index.add("Who painted the Sistine Chapel ceiling?", ["art"])
        assert len(index) == 2

    def test_rejects_reworded_duplicate(self):
        index = FingerprintIndex()
        assert index.add("Which painter finished the Mona Lisa portrait during the Renaissance era?", [])
        reworded = "Which painter completed the Mona Lisa portrait during the Renaissance period?"
        assert not is_near_duplicate(
            normalize_question(reworded),
            normalize_question("Which painter finished the Mona Lisa portrait during the Renaissance era?"),
        )
        assert index.is_duplicate(reworded, [])
        assert index.add("Which painter finished the Last Supper mural during the Renaissance era?", [])
        assert len(index) == 2
