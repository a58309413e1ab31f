"""Tests for CLI commands: preview, check-optimize, optimize, serve and config."""

import json
from unittest.mock import patch

from typer.testing import CliRunner

from rehearse.infrastructure.adapters import dump_history, load_params
from rehearse.interface.cli import app

runner = CliRunner()


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "preview" in result.stdout
    assert "optimize" in result.stdout
    assert "config" in result.stdout


# --- Preview ---


def test_preview_json_for_new_card():
    result = runner.invoke(app, ["preview", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert set(data) == {"again", "hard", "good", "easy"}
    assert data["again"]["state"] == "learning"
    assert data["easy"]["state"] == "review"
    assert data["again"]["retrievability"] is None


def test_preview_review_card():
    result = runner.invoke(
        app,
        ["preview", "--state", "review", "--stability", "10", "--difficulty", "5", "--days-since", "10", "--reps", "4", "--json"],
    )
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["again"]["state"] == "relearning"
    assert data["again"]["lapses"] == 1
    assert data["good"]["retrievability"] == 0.9


def test_preview_text_output():
    result = runner.invoke(app, ["preview", "--state", "review", "--stability", "3", "--difficulty", "4", "--days-since", "3"])
    assert result.exit_code == 0
    assert "Card: review" in result.stdout
    assert "good" in result.stdout


def test_preview_rejects_invalid_card():
    result = runner.invoke(app, ["preview", "--state", "review", "--stability", "5", "--difficulty", "42", "--reps", "2"])
    assert result.exit_code == 1
    assert "Error:" in result.output


# --- Optimization ---


def test_check_optimize_at_milestone():
    result = runner.invoke(app, ["check-optimize", "50"])
    assert result.exit_code == 0
    assert "Optimize: yes" in result.stdout
    assert "Next milestone: 100 reviews" in result.stdout


def test_check_optimize_between_milestones():
    result = runner.invoke(app, ["check-optimize", "120", "--last", "100"])
    assert result.exit_code == 0
    assert "Optimize: no" in result.stdout


def test_optimize_dry_run(tmp_path, history_factory):
    path = tmp_path / "history.yaml"
    dump_history(history_factory(n_cards=20, reviews_per_card=4), path)

    result = runner.invoke(app, ["optimize", str(path)])

    assert result.exit_code == 0
    assert "Reviews: 80 (60 scored)" in result.stdout
    assert "Log loss:" in result.stdout
    assert "Calibration:" in result.stdout
    assert "(60 reviews)" in result.stdout


def test_optimize_json_with_output(tmp_path, history_factory):
    path = tmp_path / "history.yaml"
    out = tmp_path / "params.yaml"
    dump_history(history_factory(n_cards=40, reviews_per_card=5), path)

    result = runner.invoke(app, ["optimize", str(path), "--json", "-o", str(out)])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert len(data["weights"]) == 17
    assert data["sample_size"] == 200
    assert data["prediction"]["sample_size"] == 160
    if data["applied"]:
        assert list(load_params(out).weights) == data["weights"]
    else:
        assert not out.exists()


def test_optimize_with_too_few_reviews(tmp_path, history_factory):
    path = tmp_path / "history.yaml"
    dump_history(history_factory(n_cards=2, reviews_per_card=4), path)

    result = runner.invoke(app, ["optimize", str(path)])

    assert result.exit_code == 1
    assert "Need at least" in result.output


def test_optimize_with_missing_file(tmp_path):
    result = runner.invoke(app, ["optimize", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1


# --- Server ---


@patch("uvicorn.run")
def test_serve_command(mock_run):
    result = runner.invoke(app, ["serve", "--host", "0.0.0.0", "--port", "9100"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with("rehearse.server:app", host="0.0.0.0", port=9100, reload=False)


# --- Config ---


@patch("rehearse.interface.cli.resolve_config")
def test_config_show_command(mock_resolve_config):
    mock_config = mock_resolve_config.return_value
    mock_config.model_dump.return_value = {"session_capacity": 10, "storage_chain": ["memory"]}

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    output_data = json.loads(result.stdout)
    assert output_data["session_capacity"] == 10
    assert output_data["storage_chain"] == ["memory"]
