from datetime import datetime, timezone

import pytest

from rehearse.domain.errors import InvalidRating, InvariantViolation
from rehearse.domain.models import (
    BatchWriteRequest,
    CardMemoryState,
    CardState,
    Rating,
    ReviewEvent,
)


def test_rating_parse_accepts_ints_and_names():
    assert Rating.parse(0) is Rating.AGAIN
    assert Rating.parse("good") is Rating.GOOD
    assert Rating.parse(" EASY ") is Rating.EASY
    assert Rating.parse(Rating.HARD) is Rating.HARD


@pytest.mark.parametrize("value", [4, -1, "great", 2.0, None, True])
def test_rating_parse_rejects_unknown_values(value):
    with pytest.raises(InvalidRating):
        Rating.parse(value)


def test_invalid_rating_is_a_value_error():
    with pytest.raises(ValueError):
        Rating.parse(9)


def test_schedulable_states():
    assert CardState.REVIEW.schedulable
    assert not CardState.BURIED.schedulable
    assert not CardState.SUSPENDED.schedulable


def test_new_card_defaults():
    card = CardMemoryState.new("c1", "u1", deck_id="d1")
    assert card.state == CardState.NEW
    assert card.stability == 0.0
    assert card.due_at is None
    assert card.reps == 0
    assert card.created_at.tzinfo is not None


def test_negative_stability_is_rejected():
    with pytest.raises(InvariantViolation):
        CardMemoryState(card_id="c1", user_id="u1", stability=-1.0)


def test_reviewed_card_needs_difficulty_in_range():
    with pytest.raises(InvariantViolation):
        CardMemoryState(card_id="c1", user_id="u1", state=CardState.REVIEW, stability=3.0, difficulty=0.0, reps=2)


def test_negative_counters_are_rejected():
    with pytest.raises(InvariantViolation):
        CardMemoryState(card_id="c1", user_id="u1", lapses=-1)


def test_state_string_is_coerced():
    card = CardMemoryState(card_id="c1", user_id="u1", state="learning", stability=1.0, difficulty=5.0, reps=1)
    assert card.state is CardState.LEARNING


def test_card_dict_roundtrip_keeps_timestamps():
    ts = datetime(2026, 1, 2, 3, 4, tzinfo=timezone.utc)
    card = CardMemoryState(
        card_id="c1",
        user_id="u1",
        deck_id="d1",
        state=CardState.REVIEW,
        stability=12.5,
        difficulty=4.2,
        due_at=ts,
        reps=3,
        lapses=1,
        last_reviewed_at=ts,
        created_at=ts,
    )
    assert CardMemoryState.from_dict(card.to_dict()) == card


def test_review_event_success_and_serialization():
    ts = datetime(2026, 1, 2, tzinfo=timezone.utc)
    event = ReviewEvent(
        session_id="s1",
        user_id="u1",
        card_id="c1",
        rating=Rating.AGAIN,
        response_time_ms=1200,
        reviewed_at=ts,
        state_before=CardState.REVIEW,
        state_after=CardState.RELEARNING,
        stability_before=10.0,
        stability_after=3.0,
        difficulty_before=5.0,
        difficulty_after=6.0,
        elapsed_days=10.0,
        scheduled_days=3.0,
        lapses_before=0,
    )
    assert not event.success
    data = event.to_dict()
    assert data["rating"] == 0
    assert data["state_after"] == "relearning"
    assert ReviewEvent.from_dict(data) == event


def test_batch_request_counts_events():
    request = BatchWriteRequest(session_id="s1", user_id="u1", events=(), states=())
    assert request.review_count == 0
    assert request.card_count == 0
    assert request.to_dict()["session_id"] == "s1"
