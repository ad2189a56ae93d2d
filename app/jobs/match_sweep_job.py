"""
Scheduled matching sweep.

Runs the same sweep as POST /matching/check-matches on a fixed interval.
Overlap with on-demand sweeps is prevented by the engine's Redis lock.
"""

from collections.abc import Callable
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.runtime import run_every, worker_resources
from app.services.matching.match_engine import MatchEngine, get_match_engine

logger = get_logger(__name__)


async def run_match_sweep_job(engine: MatchEngine | None = None) -> dict[str, Any]:
    """Run a single sweep and return its summary."""
    engine = engine or get_match_engine()
    result = await engine.run_sweep(triggered_by="scheduler")
    summary = result.model_dump()
    logger.info(
        "Match sweep job completed",
        pairs_examined=result.pairs_examined,
        matches_created=result.matches_created,
        skipped_existing=result.skipped_existing,
        error_count=len(result.errors),
    )
    return summary


async def run_match_sweep_once() -> None:
    async with worker_resources():
        await run_match_sweep_job()


async def start_match_sweep_scheduler(
    engine_factory: Callable[[], MatchEngine] = get_match_engine,
    interval_minutes: int | None = None,
    max_cycles: int | None = None,
) -> None:
    interval = (interval_minutes or settings.MATCH_SWEEP_INTERVAL_MINUTES) * 60
    await run_every(
        lambda: run_match_sweep_job(engine_factory()),
        interval,
        name="match_sweep",
        max_cycles=max_cycles,
    )


async def run_match_sweep_scheduler() -> None:
    async with worker_resources():
        await start_match_sweep_scheduler()
