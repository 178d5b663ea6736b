"""Leaf-wise merge of two versions of the same profile."""

from trivia_feed.errors import ProfileValidationError
from trivia_feed.models.profile import Interaction, Profile, WeightNode


def _max_optional(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _merge_node(target: WeightNode, other: WeightNode) -> None:
    # Merged weights are maxima of already-clamped values, so they stay in range.
    target.weight = max(target.weight, other.weight)
    target.last_viewed = _max_optional(target.last_viewed, other.last_viewed)


def _later_interaction(a: Interaction, b: Interaction) -> Interaction:
    """The interaction with the later ``viewed_at``; ties resolve on content."""
    if a.viewed_at != b.viewed_at:
        return a if a.viewed_at > b.viewed_at else b
    return a if a.model_dump_json() >= b.model_dump_json() else b


def merge_into(target: Profile, other: Profile) -> Profile:
    """Merge ``other`` into ``target`` in place and return ``target``.

    Weights take the maximum per node, interactions are unioned by item id
    (later ``viewed_at`` wins), counters take the maximum and cold-start
    completion is sticky.
    """
    if target.user_id != other.user_id:
        raise ProfileValidationError(
            f"cannot merge profile of {other.user_id} into {target.user_id}"
        )

    for topic_name, other_topic in other.topics.items():
        topic = target.topics.get(topic_name)
        if topic is None:
            target.topics[topic_name] = other_topic.model_copy(deep=True)
            continue
        _merge_node(topic, other_topic)
        for sub_name, other_sub in other_topic.subtopics.items():
            sub = topic.subtopics.get(sub_name)
            if sub is None:
                topic.subtopics[sub_name] = other_sub.model_copy(deep=True)
                continue
            _merge_node(sub, other_sub)
            for branch_name, other_branch in other_sub.branches.items():
                branch = sub.branches.get(branch_name)
                if branch is None:
                    sub.branches[branch_name] = other_branch.model_copy(deep=True)
                else:
                    _merge_node(branch, other_branch)

    for item_id, other_interaction in other.interactions.items():
        mine = target.interactions.get(item_id)
        winner = other_interaction if mine is None else _later_interaction(mine, other_interaction)
        if winner is not mine:
            target.interactions[item_id] = winner.model_copy()

    target.total_answered = max(target.total_answered, other.total_answered)
    target.last_refreshed = max(target.last_refreshed, other.last_refreshed)
    target.cold_start_complete = target.cold_start_complete or other.cold_start_complete
    target.version = max(target.version, other.version)
    return target


def merge_profiles(local: Profile, remote: Profile) -> Profile:
    """Return a new profile merging ``local`` and ``remote``; inputs are untouched."""
    return merge_into(local.model_copy(deep=True), remote)
