import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ValidationError

from rehearse.application.optimizer import Optimizer, check_needed
from rehearse.application.scheduling import SchedulingEngine, SchedulingResult
from rehearse.consts import VERSION
from rehearse.domain.errors import (
    CardNotSchedulable,
    DailyLimitReached,
    DailyLimitRejected,
    InsufficientData,
    InvariantViolation,
    RehearseError,
)
from rehearse.domain.models import CardMemoryState, utcnow
from rehearse.domain.params import ParameterSet
from rehearse.infrastructure.adapters.history_file import parse_history

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("rehearse.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Rehearse Server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("Rehearse Server shutting down...")


app = FastAPI(
    title="Rehearse Server",
    description="Local scheduling and optimization server for rehearse.",
    version=VERSION,
    lifespan=lifespan,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


def _status_for(e: RehearseError) -> int:
    if isinstance(e, (DailyLimitReached, DailyLimitRejected)):
        return 429
    if isinstance(e, (CardNotSchedulable, InsufficientData)):
        return 409
    if isinstance(e, InvariantViolation):
        return 500
    return 400


def _params_from(raw: dict[str, Any] | None) -> ParameterSet:
    if raw is None:
        return ParameterSet.default()
    try:
        return ParameterSet(**raw)
    except (ValidationError, InvariantViolation) as e:
        raise HTTPException(status_code=400, detail=f"Invalid parameters: {e}") from e


class PreviewRequest(BaseModel):
    card: dict[str, Any]
    params: dict[str, Any] | None = None
    now: datetime | None = None


class PreviewOutcome(BaseModel):
    state: str
    stability: float
    difficulty: float
    due_at: datetime
    interval_days: float
    retrievability: float | None
    reps: int
    lapses: int


def _outcome(result: SchedulingResult) -> PreviewOutcome:
    card = result.card
    return PreviewOutcome(
        state=card.state.value,
        stability=card.stability,
        difficulty=card.difficulty,
        due_at=card.due_at,
        interval_days=result.interval.total_seconds() / 86400,
        retrievability=result.retrievability,
        reps=card.reps,
        lapses=card.lapses,
    )


@app.post("/schedule/preview", response_model=dict[str, PreviewOutcome])
async def schedule_preview(req: PreviewRequest):
    """
    Outcome of each rating for one card, without changing anything.
    """
    params = _params_from(req.params)
    try:
        card = CardMemoryState.from_dict(req.card)
    except (KeyError, TypeError, ValueError, InvariantViolation) as e:
        raise HTTPException(status_code=400, detail=f"Invalid card: {e}") from e
    try:
        results = SchedulingEngine(params).preview(card, req.now or utcnow())
    except TypeError as e:
        # naive and aware timestamps mixed between card and `now`
        raise HTTPException(status_code=400, detail=f"Invalid timestamps: {e}") from e
    except RehearseError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e)) from e
    return {rating.name.lower(): _outcome(result) for rating, result in results.items()}


class CheckRequest(BaseModel):
    review_count: int = Field(ge=0)
    last_optimized_at_count: int = Field(default=0, ge=0)


class CheckResponse(BaseModel):
    should: bool
    reason: str
    next_milestone: int


@app.post("/optimize/check", response_model=CheckResponse)
async def optimize_check(req: CheckRequest):
    check = check_needed(req.review_count, req.last_optimized_at_count)
    return CheckResponse(should=check.should, reason=check.reason, next_milestone=check.next_milestone)


class OptimizeRequest(BaseModel):
    reviews: list[dict[str, Any]]
    params: dict[str, Any] | None = None
    user_id: str | None = None


class PredictionReport(BaseModel):
    sample_size: int
    average_error: float
    bias: float
    ece: float
    calibration: float
    consistency: float


class OptimizeResponse(BaseModel):
    weights: list[float]
    confidence: float
    calibration: float
    sample_size: int
    scored_reviews: int
    baseline_loss: float
    candidate_loss: float
    changes: dict[str, tuple[float, float]]
    prediction: PredictionReport | None = None


@app.post("/optimize", response_model=OptimizeResponse)
async def optimize(req: OptimizeRequest):
    """
    Fit a candidate ParameterSet to the posted review history.

    Nothing is stored; the caller decides whether to apply the weights.
    """
    params = _params_from(req.params)
    try:
        history = parse_history(req.reviews, req.user_id)
        result = await asyncio.to_thread(Optimizer().optimize, history, params)
    except RehearseError as e:
        if isinstance(e, InvariantViolation):
            logger.error(f"Optimization produced an invalid candidate: {e}")
        raise HTTPException(status_code=_status_for(e), detail=str(e)) from e

    logger.info(f"Optimized {result.sample_size} reviews, confidence {result.confidence:.2f}")
    return OptimizeResponse(
        weights=list(result.candidate.weights),
        confidence=result.confidence,
        calibration=result.calibration,
        sample_size=result.sample_size,
        scored_reviews=result.scored_reviews,
        baseline_loss=result.baseline_loss,
        candidate_loss=result.candidate_loss,
        changes=result.changes,
        prediction=PredictionReport(**asdict(result.prediction)) if result.prediction else None,
    )
