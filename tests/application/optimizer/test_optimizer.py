import pytest

from rehearse.application.optimizer import (
    OptimizationCandidate,
    Optimizer,
    check_needed,
    milestone_after,
    rank_candidates,
    replay,
)
from rehearse.application.optimizer.optimizer import group_by_card
from rehearse.domain.errors import InsufficientData, InvariantViolation
from rehearse.domain.params import ParameterSet


@pytest.mark.parametrize(
    "count,last,should,next_milestone",
    [
        (0, 0, False, 50),
        (49, 0, False, 50),
        (50, 0, True, 100),
        (99, 50, False, 100),
        (100, 50, True, 250),
        (180, 50, True, 250),
        (2000, 1000, True, 3000),
        (2500, 2000, False, 3000),
        (3000, 2000, True, 4000),
    ],
)
def test_check_needed_milestones(count, last, should, next_milestone):
    check = check_needed(count, last)
    assert check.should is should
    assert check.next_milestone == next_milestone
    assert check.reason


def test_check_needed_reports_missing_reviews():
    check = check_needed(30, 0)
    assert "20 more reviews" in check.reason


def test_milestone_after():
    assert milestone_after(0) == 50
    assert milestone_after(250) == 500
    assert milestone_after(2000) == 3000
    assert milestone_after(3500) == 4000


def test_rank_candidates_prefers_milestones_and_volume():
    ranked = rank_candidates(
        [
            OptimizationCandidate("small", total_reviews=60),
            OptimizationCandidate("milestone", total_reviews=250),
            OptimizationCandidate("stale", total_reviews=300, days_since_update=40),
        ]
    )
    assert [c.user_id for c in ranked] == ["milestone", "stale", "small"]


def test_insufficient_data_below_minimum(history_factory, params):
    history = history_factory(n_cards=13, reviews_per_card=4)[:49]
    with pytest.raises(InsufficientData) as exc:
        Optimizer().optimize(history, params)
    assert exc.value.have == 49
    assert exc.value.need == 50


def test_replay_scores_only_spaced_reviews(history_factory, params):
    history = history_factory(n_cards=5, reviews_per_card=4)
    predictions, outcomes = replay(group_by_card(history), params)
    # First review of each card initializes the state and is not scored
    assert len(predictions) == 5 * 3
    assert all(0 < p <= 1 for p in predictions)
    assert set(outcomes) <= {0, 1}


def test_optimize_is_conservative(history_factory, params):
    history = history_factory(n_cards=20, reviews_per_card=4)
    result = Optimizer(max_delta=0.1).optimize(history, params)

    for old, new in zip(params.weights, result.candidate.weights):
        assert abs(new - old) <= abs(old) * 0.1 + 1e-9
    assert result.sample_size == 80
    assert result.candidate_loss <= result.baseline_loss
    assert result.improved is bool(result.changes)
    assert 0.0 <= result.confidence <= 1.0
    assert 0.0 <= result.calibration <= 1.0
    for name, (old, new) in result.changes.items():
        assert old != new
        assert name.startswith("w")


def test_optimize_reports_metrics_and_prediction(history_factory, params):
    history = history_factory(n_cards=20, reviews_per_card=4)
    result = Optimizer().optimize(history, params)

    assert result.metrics.total_reviews == 80
    prediction = result.prediction
    assert prediction.sample_size == 60
    assert 0.0 <= prediction.ece <= 1.0
    assert prediction.calibration == pytest.approx(1.0 - prediction.ece)
    assert -1.0 <= prediction.bias <= 1.0
    assert prediction.average_error > 0


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_optimize_respects_tighter_delta(history_factory, params, seed):
    history = history_factory(n_cards=15, reviews_per_card=5, seed=seed)
    result = Optimizer(max_delta=0.03, passes=1).optimize(history, params)
    for old, new in zip(params.weights, result.candidate.weights):
        assert abs(new - old) <= abs(old) * 0.03 + 1e-9


def test_optimize_never_leaves_parameter_bounds(history_factory):
    weights = list(ParameterSet.default().weights)
    weights[7] = 0.97
    current = ParameterSet.default().with_weights(weights)

    result = Optimizer().optimize(history_factory(), current)
    assert 0 <= result.candidate.w[7] <= 1


def test_optimize_does_not_mutate_inputs(history_factory, params):
    history = history_factory()
    snapshot = list(history)
    Optimizer().optimize(history, params)
    assert history == snapshot
    assert params == ParameterSet.default()


def test_confidence_grows_with_sample_size(history_factory, params):
    small = Optimizer(passes=1).optimize(history_factory(n_cards=13, reviews_per_card=4), params)
    large = Optimizer(passes=1).optimize(history_factory(n_cards=60, reviews_per_card=4), params)
    volume_small = min(small.sample_size / 200, 1)
    volume_large = min(large.sample_size / 200, 1)
    assert small.confidence == pytest.approx((volume_small + small.calibration) / 2)
    assert large.confidence == pytest.approx((volume_large + large.calibration) / 2)
    assert volume_large > volume_small


def test_bounded_move_check_rejects_large_moves():
    optimizer = Optimizer(max_delta=0.1)
    with pytest.raises(InvariantViolation):
        optimizer._assert_bounded([1.0, 2.0], [1.05, 2.5])


def test_max_delta_must_be_a_fraction():
    with pytest.raises(ValueError):
        Optimizer(max_delta=1.5)
