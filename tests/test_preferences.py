"""Tests for generation-preference extraction."""

from trivia_feed.generation.preferences import DEFAULT_CATALOG, extract_preferences
from trivia_feed.models.item import CandidateItem
from trivia_feed.models.profile import Interaction, Profile


def make_item(item_id, tags):
    return CandidateItem(
        id=item_id, question=f"Question {item_id}?", topic="Science", subtopic="s", branch="b", tags=tags
    )


def test_new_profile_falls_back_to_catalog():
    prefs = extract_preferences(Profile(user_id="u1"))
    assert prefs.primary_topics == list(DEFAULT_CATALOG[:3])
    assert prefs.preferred_subtopics == []
    assert prefs.recent_questions == []
    assert set(prefs.adjacent_topics) == set(DEFAULT_CATALOG[3:])


def test_primary_topics_ordered_by_weight():
    profile = Profile(user_id="u1")
    profile.path("History", "Ancient", "Rome")[0].adjust(0.1, now=0)
    for node in profile.path("Science", "Physics", "Optics"):
        node.adjust(0.3, now=0)
    profile.path("Music", "Jazz", "Bebop")[0].adjust(-0.35, now=0)

    prefs = extract_preferences(profile)

    assert prefs.primary_topics == ["Science", "History"]
    assert prefs.preferred_subtopics == ["Physics"]
    assert prefs.preferred_branches == ["Optics"]
    assert prefs.hierarchy_hints == ["Science:Physics"]
    assert "Music" not in prefs.adjacent_topics
    assert "Science" not in prefs.adjacent_topics


def test_tags_and_recent_questions():
    profile = Profile(user_id="u1")
    items = [make_item("q1", ["Space", "Planets"]), make_item("q2", ["space"]), make_item("q3", ["ignored"])]
    profile.interactions["q1"] = Interaction(item_id="q1", was_correct=True)
    profile.interactions["q2"] = Interaction(item_id="q2", was_correct=False)
    profile.interactions["q3"] = Interaction(item_id="q3", was_skipped=True)

    prefs = extract_preferences(profile, recent_items=items)

    assert prefs.preferred_tags == ["space", "planets"]
    assert prefs.recent_questions == ["Question q3?", "Question q2?", "Question q1?"]
