import pytest
from fastapi.testclient import TestClient

from rehearse.consts import VERSION
from rehearse.domain.models import CardState
from rehearse.server import app

client = TestClient(app)

NOW = "2026-03-01T09:00:00+00:00"


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version():
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_preview_review_card(card_factory):
    card = card_factory(state=CardState.REVIEW, stability=10.0, difficulty=5.0, days_ago=10, reps=4)

    response = client.post("/schedule/preview", json={"card": card.to_dict(), "now": NOW})

    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"again", "hard", "good", "easy"}
    assert data["again"]["state"] == "relearning"
    assert data["again"]["lapses"] == 1
    assert data["good"]["state"] == "review"
    assert data["good"]["retrievability"] == pytest.approx(0.9)
    assert data["easy"]["interval_days"] >= data["good"]["interval_days"] >= data["hard"]["interval_days"]


def test_preview_new_card_with_custom_params(card_factory):
    response = client.post(
        "/schedule/preview",
        json={"card": card_factory().to_dict(), "params": {"learning_steps": [5, 30]}, "now": NOW},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["again"]["state"] == "learning"
    assert data["again"]["interval_days"] == pytest.approx(5 / 1440)
    assert data["again"]["retrievability"] is None


def test_preview_rejects_invalid_card():
    response = client.post("/schedule/preview", json={"card": {"card_id": "c1", "user_id": "u1", "stability": -1}})
    assert response.status_code == 400
    assert "Invalid card" in response.json()["detail"]


def test_preview_rejects_naive_timestamps():
    card = {"card_id": "c1", "user_id": "u1", "created_at": "2026-03-01T08:00:00"}
    response = client.post("/schedule/preview", json={"card": card, "now": NOW})
    assert response.status_code == 400


def test_preview_rejects_invalid_params(card_factory):
    response = client.post(
        "/schedule/preview",
        json={"card": card_factory().to_dict(), "params": {"weights": [1.0, 2.0]}},
    )
    assert response.status_code == 400
    assert "Invalid parameters" in response.json()["detail"]


def test_preview_suspended_card_conflicts(card_factory):
    card = card_factory(state=CardState.SUSPENDED, stability=4.0, difficulty=5.0, days_ago=3, reps=2)
    response = client.post("/schedule/preview", json={"card": card.to_dict(), "now": NOW})
    assert response.status_code == 409


def test_optimize_check():
    response = client.post("/optimize/check", json={"review_count": 50})
    assert response.status_code == 200
    assert response.json() == {
        "should": True,
        "reason": "Reached milestone of 50 reviews",
        "next_milestone": 100,
    }


def test_optimize(history_factory):
    reviews = [e.to_dict() for e in history_factory(n_cards=15, reviews_per_card=4)]

    response = client.post("/optimize", json={"reviews": reviews})

    assert response.status_code == 200
    data = response.json()
    assert len(data["weights"]) == 17
    assert data["sample_size"] == 60
    assert data["scored_reviews"] == 45
    assert data["candidate_loss"] <= data["baseline_loss"]
    assert 0 <= data["confidence"] <= 1
    assert data["prediction"]["sample_size"] == 45
    assert 0 <= data["prediction"]["ece"] <= 1


def test_optimize_accepts_naive_timestamps(history_factory):
    reviews = [e.to_dict() for e in history_factory(n_cards=15, reviews_per_card=4)]
    for review in reviews[::2]:
        review["reviewed_at"] = review["reviewed_at"].replace("+00:00", "")

    response = client.post("/optimize", json={"reviews": reviews})

    assert response.status_code == 200
    assert response.json()["sample_size"] == 60


def test_optimize_with_too_few_reviews(history_factory):
    reviews = [e.to_dict() for e in history_factory(n_cards=3, reviews_per_card=4)]
    response = client.post("/optimize", json={"reviews": reviews})
    assert response.status_code == 409
    assert "Need at least 50 reviews" in response.json()["detail"]


def test_optimize_with_malformed_review():
    response = client.post("/optimize", json={"reviews": [{"rating": 2}]})
    assert response.status_code == 400
