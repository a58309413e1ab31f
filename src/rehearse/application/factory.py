"""
Component factory.
Builds the cache, quota policy, engine and services from an AppConfig.
"""

import logging
from datetime import timedelta

from rehearse.application.config import AppConfig
from rehearse.application.optimizer import OptimizationService, Optimizer
from rehearse.application.scheduling import SchedulingEngine
from rehearse.application.session import QuotaPolicy, SessionCache, SessionManager
from rehearse.domain.params import ParameterSet
from rehearse.domain.ports import ParameterStore, ReviewHistorySource
from rehearse.infrastructure.storage import build_storage_chain

logger = logging.getLogger(__name__)


def build_session_cache(config: AppConfig) -> SessionCache:
    """
    Returns a SessionCache over the configured storage chain.

    The first backend that passes its probe is selected once, here. The
    caller owns the cache and must `close()` it (or the SessionManager
    holding it).
    """
    chain = build_storage_chain(config.storage_chain, config.cache_dir)
    cache = SessionCache(
        chain,
        ttl=timedelta(hours=config.cache_ttl_hours),
        max_entries=config.effective_cache_max_entries,
    )
    logger.info(f"Session cache backend: {cache.backend.name}")
    return cache


def build_quota_policy(config: AppConfig) -> QuotaPolicy:
    return QuotaPolicy(config.tier_limits)


def build_optimizer(config: AppConfig) -> Optimizer:
    return Optimizer(
        min_reviews=config.min_reviews_for_optimization,
        max_delta=config.max_weight_delta,
        full_confidence_reviews=config.full_confidence_reviews,
    )


def build_session_manager(
    config: AppConfig,
    params: ParameterSet | None = None,
    cache: SessionCache | None = None,
) -> SessionManager:
    return SessionManager(
        SchedulingEngine(params),
        cache=cache if cache is not None else build_session_cache(config),
        capacity=config.session_capacity,
    )


def build_optimization_service(
    config: AppConfig,
    history: ReviewHistorySource,
    store: ParameterStore,
) -> OptimizationService:
    return OptimizationService(
        history,
        store,
        optimizer=build_optimizer(config),
        history_window=config.optimizer_history_window,
        min_confidence_to_apply=config.min_confidence_to_apply,
    )
