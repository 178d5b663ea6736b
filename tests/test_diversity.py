"""Tests for consecutive-topic deferral."""

from trivia_feed.models.item import CandidateItem
from trivia_feed.personalization.diversity import enforce_topic_diversity, trailing_run


def make_item(item_id, topic):
    return CandidateItem(id=item_id, question=f"{item_id}?", topic=topic, subtopic="s", branch="b")


def ids(items):
    return [item.id for item in items]


def test_trailing_run():
    assert trailing_run(["A", "B", "B"], "B") == 2
    assert trailing_run(["A", "B", "B"], "A") == 0
    assert trailing_run([], "A") == 0


def test_third_in_a_row_is_deferred():
    items = [make_item("a1", "A"), make_item("a2", "A"), make_item("a3", "A"), make_item("b1", "B")]
    assert ids(enforce_topic_diversity(items)) == ["a1", "a2", "b1", "a3"]


def test_history_counts_towards_run():
    items = [make_item("a1", "A"), make_item("b1", "B")]
    assert ids(enforce_topic_diversity(items, history=["A", "A"])) == ["b1", "a1"]


def test_nothing_dropped_when_unavoidable():
    items = [make_item(f"a{i}", "A") for i in range(4)]
    assert ids(enforce_topic_diversity(items)) == ["a0", "a1", "a2", "a3"]


def test_already_diverse_order_kept():
    items = [make_item("a1", "A"), make_item("b1", "B"), make_item("a2", "A"), make_item("c1", "C")]
    assert ids(enforce_topic_diversity(items)) == ["a1", "b1", "a2", "c1"]
