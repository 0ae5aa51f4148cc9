#!/usr/bin/env python3
"""
Matching Orchestrator - one batch run of the circle matching engine.

Stages, in strict order:
1. Discover unmatched users (no active membership)
2. Rebalance circles whose composition drifted
3. Place each unmatched user into the best circle, or form a new one
4. Check geographic cohesion of every circle

Read failures abort the run. Individual write failures are logged,
recorded in the run stats and skipped. Running twice with no new data
performs no additional membership writes.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from core.config_loader import MatchingConfig, TransitionConfig
from core.exceptions import RepositoryWriteError
from core.geo.distance import DistanceCalculator
from core.geo.resolver import GeoResolver
from core.interfaces import CircleRepository
from core.matcher.cohesion import CohesionChecker
from core.matcher.formation import CircleFormation
from core.matcher.models import CircleSnapshot, MatchingRunStats, ProgressEvent, UserProfile
from core.matcher.rebalancer import CircleRebalancer, find_best_circle
from core.naming import NamingService
from core.scorer import CompatibilityScorer, UserSimilarityCalculator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class MatchingOrchestrator:
    """
    Coordinates discovery, rebalancing, placement and cohesion checks.

    All collaborators are injected; the orchestrator holds no database
    session. Every repository call is its own unit of work.
    """

    def __init__(
        self,
        repo: CircleRepository,
        scorer: CompatibilityScorer,
        naming: NamingService,
        config: Optional[MatchingConfig] = None,
        transition_config: Optional[TransitionConfig] = None,
        resolver: Optional[GeoResolver] = None,
        similarity: Optional[UserSimilarityCalculator] = None,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.repo = repo
        self.scorer = scorer
        self.naming = naming
        self.config = config or MatchingConfig()
        self.transition_config = transition_config or TransitionConfig()
        self.resolver = resolver
        self._now = now or (lambda: datetime.now(timezone.utc))

        self.rebalancer = CircleRebalancer(
            repo, scorer, self.config, self.transition_config, now=self._now
        )
        self.formation = CircleFormation(
            repo, naming, self.config,
            similarity=similarity,
            warm_cache=self.ensure_location_cache_for_users,
        )
        self.cohesion = CohesionChecker(repo, self.distance_calc, self.config)

    @property
    def distance_calc(self) -> DistanceCalculator:
        return self.scorer.distance_calc

    def run(
        self,
        status_callback: Optional[ProgressCallback] = None,
        stop_event: Optional[threading.Event] = None
    ) -> MatchingRunStats:
        """
        Execute one matching run.

        Args:
            status_callback: Receives a ProgressEvent at the start and end of each stage
            stop_event: When set, placement stops after the current user

        Returns:
            MatchingRunStats with counters and recorded write errors

        Raises:
            RepositoryReadError: If any read fails
        """
        if stop_event is None:
            stop_event = threading.Event()

        stats = MatchingRunStats()
        self.distance_calc.begin_run()

        # Stage 1
        step_start = time.time()
        self._emit(status_callback, "discover", "started", {}, 0.0)
        unmatched_users, active_counts = self.discover_unmatched_users()
        stats.unmatched_users = len(unmatched_users)
        self._emit(status_callback, "discover", "completed",
                   {'unmatched_users': stats.unmatched_users}, time.time() - step_start)

        # Stage 2
        step_start = time.time()
        self._emit(status_callback, "rebalance", "started", {}, 0.0)
        if self.config.rebalance.enabled:
            circles = self.repo.list_circles_with_active_members()
            self.rebalancer.rebalance(circles, active_counts, stats)
        else:
            logger.info("Rebalancing disabled in config")
        self._emit(status_callback, "rebalance", "completed", {
            'circles_checked': stats.circles_checked,
            'circles_rebalanced': stats.circles_rebalanced,
            'transitions_started': stats.transitions_started,
        }, time.time() - step_start)

        # Stage 3
        step_start = time.time()
        self._emit(status_callback, "placement", "started", {'unmatched_users': len(unmatched_users)}, 0.0)
        circles = self.repo.list_circles_with_active_members()
        self.place_users(unmatched_users, circles, stats, stop_event)
        self._emit(status_callback, "placement", "completed", {
            'users_placed': stats.users_placed,
            'circles_created': stats.circles_created,
            'users_in_new_circles': stats.users_in_new_circles,
            'users_left_unmatched': stats.users_left_unmatched,
        }, time.time() - step_start)

        # Stage 4
        step_start = time.time()
        self._emit(status_callback, "cohesion", "started", {'circles': len(circles)}, 0.0)
        self.cohesion.check(circles, stats)
        self._emit(status_callback, "cohesion", "completed",
                   {'split_candidates': stats.split_candidates}, time.time() - step_start)

        logger.info(
            f"Matching complete: {stats.users_placed} placed, {stats.circles_created} circles created, "
            f"{stats.transitions_started} transitions, {stats.users_left_unmatched} left unmatched, "
            f"{len(stats.write_errors)} write errors"
        )
        if self.resolver is not None:
            logger.info(
                f"Geocoding: {self.resolver.provider_calls} provider calls, "
                f"{self.resolver.cache_hits} cache hits"
            )
        return stats

    def discover_unmatched_users(self):
        """
        Users with a postal code and life stage and no active membership.

        Returns:
            (unmatched users with spending patterns loaded, user_id -> active membership count)
        """
        memberships = self.repo.list_active_memberships()
        active_counts: Dict[Any, int] = {}
        for user_id, _ in memberships:
            active_counts[user_id] = active_counts.get(user_id, 0) + 1

        users = self.repo.list_users(
            has_postal_code=True,
            has_life_stage=True,
            exclude_user_ids=set(active_counts),
        )
        self._load_spending_patterns(users)
        logger.info(f"Found {len(users)} unmatched users")
        return users, active_counts

    def _load_spending_patterns(self, users: List[UserProfile]) -> None:
        if not users:
            return
        workers = max(1, min(self.config.read_workers, len(users)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() re-raises the first read error when results are consumed
            for user, patterns in zip(users, executor.map(lambda u: self.repo.list_spending_patterns(u.id), users)):
                user.spending_patterns = patterns

    def place_users(
        self,
        users: Sequence[UserProfile],
        circles: List[CircleSnapshot],
        stats: MatchingRunStats,
        stop_event: threading.Event
    ) -> None:
        """Place users in discovery order; ``circles`` grows with newly formed circles."""
        taken: Set[Any] = set()

        for user in users:
            if stop_event.is_set():
                logger.info("Stop requested, ending placement early")
                break
            if user.id in taken:
                continue

            best = find_best_circle(self.scorer, user, circles, self.config.max_circle_size)
            if best is not None and best.score > self.config.placement_threshold:
                try:
                    self.repo.add_membership(user.id, best.circle.id)
                except RepositoryWriteError as e:
                    logger.error(f"Error adding user {user.id} to circle {best.circle.id}: {e}")
                    stats.write_errors.append(f"add_membership({user.id}, {best.circle.id}): {e}")
                    continue
                stats.membership_writes += 1
                stats.users_placed += 1
                best.circle.members.append(user)
                taken.add(user.id)
                logger.info(f"Added {user.display_name} to existing circle {best.circle.name} (score={best.score:.2f})")
                continue

            circle = self.formation.try_form(user, users, taken, stats)
            if circle is not None:
                circles.append(circle)
            else:
                logger.debug(f"User {user.id} remains unmatched")

        stats.users_left_unmatched = sum(1 for u in users if u.id not in taken)

    def ensure_location_cache_for_users(self, users: Sequence[UserProfile]) -> None:
        """Resolve members' postal codes once so later runs hit the cache."""
        if self.resolver is None:
            return
        codes = [u.postal_code for u in users if u.postal_code]
        try:
            self.resolver.warm_cache(codes)
        except Exception as e:
            logger.warning(f"Failed to warm location cache for new circle members: {e}")

    def initialize_location_cache(self) -> Dict[str, Any]:
        """Geocode every user postal code that has no cache entry yet."""
        codes = self.repo.list_uncached_postal_codes()
        logger.info(f"Initializing location cache for {len(codes)} uncached postal codes")
        if not codes or self.resolver is None:
            return {'uncached': len(codes), 'resolved': 0}

        self.resolver.begin_run()
        resolved = self.resolver.warm_cache(codes)
        return {'uncached': len(codes), 'resolved': len(resolved)}

    def _emit(
        self,
        callback: Optional[ProgressCallback],
        stage: str,
        status: str,
        counts: Dict[str, int],
        elapsed: float
    ) -> None:
        event = ProgressEvent(stage=stage, status=status, counts=dict(counts), elapsed_seconds=elapsed)
        if status == "started":
            logger.info(f"=== MATCHING STAGE: {stage} ===")
        else:
            logger.info(f"=== MATCHING STAGE: {stage} completed in {elapsed:.2f}s {counts} ===")
        if callback is None:
            return
        try:
            callback(event)
        except Exception as e:
            logger.warning(f"Progress callback failed for {stage}/{status}: {e}")
