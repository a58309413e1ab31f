"""Rehearse CLI: scheduling previews, optimization and configuration."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import typer

from rehearse.application.config import resolve_config
from rehearse.application.factory import build_optimization_service, build_optimizer
from rehearse.application.scheduling import SchedulingEngine
from rehearse.domain.errors import RehearseError
from rehearse.domain.models import CardMemoryState, CardState, utcnow
from rehearse.domain.params import ParameterSet
from rehearse.infrastructure.adapters import (
    InMemoryParameterStore,
    ReviewHistoryFile,
    dump_params,
    load_history,
    load_params,
)

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="rehearse: FSRS scheduling, session batching and parameter optimization.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

config_app = typer.Typer(help="Manage rehearse configuration.")
app.add_typer(config_app, name="config")


def _fail(e: Exception) -> None:
    typer.secho(f"Error: {e}", fg="red", err=True)
    raise typer.Exit(1)


def _params_or_default(path: Path | None) -> ParameterSet:
    return load_params(path) if path else ParameterSet.default()


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for rehearse."""
    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose == 0:
        logging.getLogger().setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def preview(
    state: Annotated[
        CardState, typer.Option(help="Current card state.", case_sensitive=False)
    ] = CardState.NEW,
    stability: Annotated[float, typer.Option(help="Current stability in days.")] = 0.0,
    difficulty: Annotated[float, typer.Option(help="Current difficulty (1-10).")] = 0.0,
    days_since: Annotated[
        float, typer.Option("--days-since", help="Days since the previous review.")
    ] = 0.0,
    reps: Annotated[int, typer.Option(help="Reviews so far.")] = 0,
    lapses: Annotated[int, typer.Option(help="Lapses so far.")] = 0,
    step: Annotated[int, typer.Option(help="Current learning/relearning step.")] = 0,
    params: Annotated[
        Path | None, typer.Option(help="YAML/JSON ParameterSet. Defaults to research weights.")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """[bold green]Preview[/bold green] the next state of a card for every rating."""
    now = utcnow()
    try:
        engine = SchedulingEngine(_params_or_default(params))
        last = now - timedelta(days=days_since)
        card = CardMemoryState(
            card_id="preview",
            user_id="cli",
            state=state,
            stability=stability,
            difficulty=difficulty,
            reps=reps,
            lapses=lapses,
            step=step,
            last_reviewed_at=last if state != CardState.NEW else None,
            created_at=last,
        )
        results = engine.preview(card, now)
    except RehearseError as e:
        _fail(e)

    rows = {
        rating.name.lower(): {
            "state": r.card.state.value,
            "interval": str(r.interval),
            "stability": round(r.card.stability, 4),
            "difficulty": round(r.card.difficulty, 4),
            "retrievability": None if r.retrievability is None else round(r.retrievability, 4),
            "lapses": r.card.lapses,
        }
        for rating, r in results.items()
    }

    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return

    typer.echo(f"Card: {state.value} S={stability} D={difficulty} ({days_since} days since last review)")
    for name, row in rows.items():
        typer.echo(
            f"  {name:<6} -> {row['state']:<10} in {row['interval']:<18} "
            f"S={row['stability']:<10} D={row['difficulty']}"
        )


@app.command("check-optimize")
def check_optimize(
    review_count: Annotated[int, typer.Argument(help="Total reviews the learner has done.")],
    last: Annotated[
        int, typer.Option("--last", help="Review count at the previous optimization.")
    ] = 0,
):
    """Tell whether a learner has reached an optimization milestone."""
    config = resolve_config()
    check = build_optimizer(config).check_needed(review_count, last)
    color = "green" if check.should else "yellow"
    typer.secho(f"Optimize: {'yes' if check.should else 'no'} ({check.reason})", fg=color)
    typer.echo(f"Next milestone: {check.next_milestone} reviews")


@app.command()
def optimize(
    history: Annotated[Path, typer.Argument(help="Review history file (YAML or JSON).")],
    user: Annotated[
        str | None, typer.Option(help="Only use reviews of this user.")
    ] = None,
    params: Annotated[
        Path | None, typer.Option(help="Current ParameterSet file. Defaults to research weights.")
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the candidate ParameterSet here when confident enough."),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """[bold green]Optimize[/bold green] FSRS weights against a review history."""
    config = resolve_config()

    try:
        events = load_history(history)
        user_id = user or (events[0].user_id if events else "")
        store = InMemoryParameterStore(_params_or_default(params))
        service = build_optimization_service(config, ReviewHistoryFile(history), store)
        report = asyncio.run(service.optimize_user(user_id, apply=output is not None))
    except RehearseError as e:
        _fail(e)

    result = report.result
    if report.applied and output is not None:
        dump_params(result.candidate, output)

    if json_output:
        payload = {
            "applied": report.applied,
            "reason": report.reason,
            "confidence": result.confidence,
            "calibration": result.calibration,
            "sample_size": result.sample_size,
            "baseline_loss": result.baseline_loss,
            "candidate_loss": result.candidate_loss,
            "weights": list(result.candidate.weights),
            "changes": {k: list(v) for k, v in result.changes.items()},
            "prediction": asdict(result.prediction) if result.prediction else None,
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    typer.echo(f"Reviews: {result.sample_size} ({result.scored_reviews} scored)")
    typer.echo(f"Log loss: {result.baseline_loss:.4f} -> {result.candidate_loss:.4f}")
    typer.echo(f"Calibration: {result.calibration:.3f}  Confidence: {result.confidence:.3f}")
    if result.prediction:
        p = result.prediction
        typer.echo(
            f"Prediction: bias {p.bias:+.3f}, mean error {p.average_error:.3f}, "
            f"ECE {p.ece:.3f} ({p.sample_size} reviews)"
        )
    for name, (old, new) in result.changes.items():
        typer.echo(f"  {name}: {old:.4f} -> {new:.4f}")
    if output is not None:
        color = "green" if report.applied else "yellow"
        typer.secho(f"{report.reason}{f' ({output})' if report.applied else ''}", fg=color)


@app.command()
def serve(
    port: Annotated[int | None, typer.Option(help="Port to bind the server to.")] = None,
    host: Annotated[str | None, typer.Option(help="Host to bind the server to.")] = None,
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Start the local HTTP server."""
    import uvicorn

    config = resolve_config({"host": host, "port": port})
    typer.secho(f"Starting rehearse server on {config.host}:{config.port}", fg="green")
    uvicorn.run("rehearse.server:app", host=config.host, port=config.port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = config.model_dump(mode="json")
    typer.echo(json.dumps(d, indent=2))


if __name__ == "__main__":
    app()
