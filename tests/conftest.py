import random
from datetime import datetime, timedelta, timezone

import pytest

from rehearse.application.scheduling import SchedulingEngine
from rehearse.application.session import SessionCache
from rehearse.domain.models import CardMemoryState, CardState, Rating, ReviewEvent
from rehearse.domain.params import ParameterSet
from rehearse.infrastructure.storage import MemoryStorage

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return T0


@pytest.fixture
def params():
    return ParameterSet.default()


@pytest.fixture
def engine(params):
    return SchedulingEngine(params)


@pytest.fixture
def memory_cache():
    return SessionCache([MemoryStorage()])


def make_card(
    card_id: str = "c1",
    state: CardState = CardState.NEW,
    stability: float = 0.0,
    difficulty: float = 0.0,
    days_ago: float | None = None,
    reps: int = 0,
    lapses: int = 0,
    step: int = 0,
    user_id: str = "u1",
    due_at: datetime | None = None,
) -> CardMemoryState:
    last = T0 - timedelta(days=days_ago) if days_ago is not None else None
    return CardMemoryState(
        card_id=card_id,
        user_id=user_id,
        state=state,
        stability=stability,
        difficulty=difficulty,
        due_at=due_at,
        reps=reps,
        lapses=lapses,
        step=step,
        last_reviewed_at=last,
        created_at=last or T0 - timedelta(days=1),
    )


@pytest.fixture
def card_factory():
    return make_card


def build_history(
    n_cards: int = 20,
    reviews_per_card: int = 4,
    user_id: str = "u1",
    seed: int = 7,
) -> list[ReviewEvent]:
    """Synthetic review log: one New review per card followed by spaced reviews."""
    rng = random.Random(seed)
    gaps = [0, 1, 3, 8, 20, 45]
    events = []
    for c in range(n_cards):
        t = T0 + timedelta(hours=c)
        for k in range(reviews_per_card):
            elapsed = gaps[k] if k < len(gaps) else 60
            t = t + timedelta(days=elapsed)
            if k == 0:
                rating = Rating.GOOD
            elif rng.random() < 0.2:
                rating = Rating.AGAIN
            else:
                rating = rng.choice([Rating.HARD, Rating.GOOD, Rating.GOOD, Rating.EASY])
            events.append(
                ReviewEvent(
                    session_id=f"s{c}-{k}",
                    user_id=user_id,
                    card_id=f"card-{c}",
                    rating=rating,
                    response_time_ms=rng.randint(1500, 9000),
                    reviewed_at=t,
                    state_before=CardState.NEW if k == 0 else CardState.REVIEW,
                    state_after=CardState.REVIEW,
                    stability_before=0.0 if k == 0 else 3.0 * k,
                    stability_after=3.0 * (k + 1),
                    difficulty_before=0.0 if k == 0 else 5.0,
                    difficulty_after=5.0,
                    elapsed_days=float(elapsed),
                    scheduled_days=float(elapsed),
                )
            )
    return events


@pytest.fixture
def history_factory():
    return build_history
