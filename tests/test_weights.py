"""Tests for the weight model (outcome deltas, compensation, clamping)."""

import pytest

from trivia_feed.models.item import CandidateItem, Outcome
from trivia_feed.models.profile import MAX_WEIGHT, MIN_WEIGHT, Interaction, Profile
from trivia_feed.personalization.weights import (
    COMPENSATION_DELTAS,
    OUTCOME_DELTAS,
    apply_outcome,
    deltas_for,
)


def make_item(item_id="q1", topic="Science", subtopic="Physics", branch="Optics"):
    return CandidateItem(
        id=item_id,
        question=f"Question {item_id}?",
        topic=topic,
        subtopic=subtopic,
        branch=branch,
    )


def weights(profile, item):
    return (
        profile.topic_weight(item.topic),
        profile.subtopic_weight(item.topic, item.subtopic),
        profile.branch_weight(item.topic, item.subtopic, item.branch),
    )


@pytest.fixture
def profile():
    return Profile(user_id="u1")


def test_correct_on_new_item(profile):
    item = make_item()
    interaction = apply_outcome(profile, item, Outcome.CORRECT, 2000, now=1000)

    assert weights(profile, item) == pytest.approx((0.6, 0.65, 0.7))
    assert interaction.was_correct is True
    assert interaction.was_skipped is False
    assert interaction.viewed_at == 1000
    assert profile.total_answered == 1
    assert profile.last_refreshed == 1000


def test_incorrect_still_signals_interest(profile):
    item = make_item()
    apply_outcome(profile, item, Outcome.INCORRECT, 2000, now=1000)
    assert weights(profile, item) == pytest.approx((0.55, 0.57, 0.6))
    assert profile.interactions["q1"].was_correct is False


def test_skip_lowers_weights_without_counting(profile):
    item = make_item()
    interaction = apply_outcome(profile, item, Outcome.SKIPPED, 500, now=1000)

    assert weights(profile, item) == pytest.approx((0.45, 0.43, 0.4))
    assert interaction.was_skipped is True
    assert interaction.was_correct is None
    assert profile.total_answered == 0


def test_skip_then_correct_uses_compensation(profile):
    item = make_item()
    apply_outcome(profile, item, Outcome.SKIPPED, 500, now=1000)
    apply_outcome(profile, item, Outcome.CORRECT, 4000, now=2000)

    assert weights(profile, item) == pytest.approx((0.5, 0.5, 0.5))
    interaction = profile.interactions["q1"]
    assert interaction.was_skipped is False
    assert interaction.was_correct is True
    assert interaction.viewed_at == 2000
    assert profile.total_answered == 1
    assert len(profile.interactions) == 1


def test_compensation_applies_once(profile):
    item = make_item()
    apply_outcome(profile, item, Outcome.SKIPPED, 500, now=1000)
    assert profile.topic_weight("Science") == pytest.approx(0.45)

    apply_outcome(profile, item, Outcome.CORRECT, 4000, now=2000)
    assert profile.topic_weight("Science") == pytest.approx(0.5)

    apply_outcome(profile, item, Outcome.CORRECT, 4000, now=3000)
    assert weights(profile, item) == pytest.approx((0.6, 0.65, 0.7))
    assert profile.total_answered == 2


def test_weights_stay_in_range(profile):
    item = make_item()
    for i in range(15):
        apply_outcome(profile, item, Outcome.CORRECT, 1000, now=i)
    assert weights(profile, item) == (MAX_WEIGHT, MAX_WEIGHT, MAX_WEIGHT)

    for i in range(30):
        apply_outcome(profile, item, Outcome.SKIPPED, 1000, now=100 + i)
    assert weights(profile, item) == (MIN_WEIGHT, MIN_WEIGHT, MIN_WEIGHT)
    assert all(MIN_WEIGHT <= node.weight <= MAX_WEIGHT for _, node in profile.iter_nodes())


def test_last_refreshed_never_moves_back(profile):
    apply_outcome(profile, make_item("q1"), Outcome.CORRECT, 1000, now=5000)
    apply_outcome(profile, make_item("q2"), Outcome.CORRECT, 1000, now=4000)
    assert profile.last_refreshed == 5000


def test_negative_time_rejected(profile):
    with pytest.raises(ValueError):
        apply_outcome(profile, make_item(), Outcome.CORRECT, -1, now=1000)
    assert profile.topics == {}


def test_nodes_stamped_with_event_time(profile):
    item = make_item()
    apply_outcome(profile, item, Outcome.CORRECT, 1000, now=777)
    assert all(node.last_viewed == 777 for _, node in profile.iter_nodes())


class TestDeltasFor:
    def test_no_previous_interaction(self):
        assert deltas_for(Outcome.CORRECT, None) == OUTCOME_DELTAS[Outcome.CORRECT]

    def test_previous_skip_compensates_answers(self):
        skipped = Interaction(item_id="q1", was_skipped=True)
        assert deltas_for(Outcome.CORRECT, skipped) == COMPENSATION_DELTAS[Outcome.CORRECT]
        assert deltas_for(Outcome.INCORRECT, skipped) == COMPENSATION_DELTAS[Outcome.INCORRECT]

    def test_repeated_skip_is_not_compensated(self):
        skipped = Interaction(item_id="q1", was_skipped=True)
        assert deltas_for(Outcome.SKIPPED, skipped) == OUTCOME_DELTAS[Outcome.SKIPPED]
