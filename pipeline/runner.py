"""Shared matching run module.

Entry points (CLI loop, manual trigger, future HTTP endpoint) call
run_matching_algorithm() and get a MatchingRunResult back; nothing here
raises for an ordinary failure.
"""

import time
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Callable
from dataclasses import dataclass, field

from core.app_context import AppContext
from core.exceptions import PipelineLockedError
from core.matcher.models import ProgressEvent
from pipeline.control import RunLock
from pipeline.transitions import process_due_transitions


logger = logging.getLogger(__name__)


@dataclass
class MatchingRunResult:
    """Result of one matching run."""
    success: bool
    users_placed: int = 0
    circles_created: int = 0
    transitions_started: int = 0
    users_left_unmatched: int = 0
    split_candidates: int = 0
    counts: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    execution_time: float = 0.0


def run_matching_algorithm(
    ctx: AppContext,
    status_callback: Optional[Callable[[ProgressEvent], None]] = None,
    stop_event: Optional[threading.Event] = None,
    source: str = "main"
) -> MatchingRunResult:
    """Run the matching engine once under the run lock.

    Args:
        ctx: Application context with config, repository and services
        status_callback: Optional receiver of per-stage ProgressEvents
        stop_event: Optional threading event to signal early termination
        source: Trigger identifier stored in the lock file

    Returns:
        MatchingRunResult with success status, counts and per-record errors
    """
    run_start = time.time()

    logger.info("=" * 60)
    logger.info("STARTING CIRCLE MATCHING")
    logger.info("=" * 60)

    if not ctx.config.matching.enabled:
        logger.info("=== CIRCLE MATCHING: Skipped (disabled in config) ===")
        return MatchingRunResult(success=True, error="Matching disabled in config")

    try:
        with RunLock(ctx.config.lock_file).hold(source, {"operation": "match"}):
            stats = ctx.orchestrator.run(status_callback=status_callback, stop_event=stop_event)
    except PipelineLockedError as e:
        logger.warning(str(e))
        return MatchingRunResult(success=False, error=f"Matching already running: {e}",
                                 execution_time=time.time() - run_start)
    except Exception as e:
        logger.exception("Error in circle matching run")
        return MatchingRunResult(success=False, error=str(e), execution_time=time.time() - run_start)

    execution_time = time.time() - run_start
    if stats.write_errors:
        logger.warning(f"{len(stats.write_errors)} records could not be written:")
        for error in stats.write_errors[:10]:
            logger.warning(f"  - {error}")

    logger.info("=" * 60)
    logger.info(f"CIRCLE MATCHING COMPLETED in {execution_time:.2f}s")
    logger.info("=" * 60)

    return MatchingRunResult(
        success=True,
        users_placed=stats.users_placed,
        circles_created=stats.circles_created,
        transitions_started=stats.transitions_started,
        users_left_unmatched=stats.users_left_unmatched,
        split_candidates=stats.split_candidates,
        counts=stats.as_dict(),
        errors=list(stats.write_errors),
        execution_time=execution_time,
    )


def run_transitions(ctx: AppContext, now: Optional[datetime] = None) -> MatchingRunResult:
    """Execute due transition tasks once."""
    run_start = time.time()
    logger.info("=== TRANSITIONS: Processing due membership deactivations ===")
    try:
        batch = process_due_transitions(ctx.repo, now or datetime.now(timezone.utc), ctx.config.transitions)
    except Exception as e:
        logger.exception("Error processing transitions")
        return MatchingRunResult(success=False, error=str(e), execution_time=time.time() - run_start)

    execution_time = time.time() - run_start
    logger.info(
        f"TRANSITIONS completed in {execution_time:.2f}s: {batch.completed} ended, "
        f"{batch.already_inactive} already inactive, {batch.failed} failed"
    )
    return MatchingRunResult(
        success=batch.failed == 0,
        counts={'due': batch.due, 'completed': batch.completed,
                'already_inactive': batch.already_inactive, 'failed': batch.failed},
        error=f"{batch.failed} transition tasks failed" if batch.failed else None,
        errors=batch.errors,
        execution_time=execution_time,
    )


def run_warm_cache(ctx: AppContext) -> MatchingRunResult:
    """Geocode every user postal code missing from the location cache."""
    run_start = time.time()
    logger.info("=== LOCATION CACHE: Initializing ===")
    try:
        counts = ctx.orchestrator.initialize_location_cache()
    except Exception as e:
        logger.exception("Error initializing location cache")
        return MatchingRunResult(success=False, error=str(e), execution_time=time.time() - run_start)

    execution_time = time.time() - run_start
    logger.info(
        f"LOCATION CACHE completed in {execution_time:.2f}s: "
        f"resolved {counts['resolved']}/{counts['uncached']} postal codes"
    )
    return MatchingRunResult(success=True, counts=counts, execution_time=execution_time)
