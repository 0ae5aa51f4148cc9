#!/usr/bin/env python3
"""
Circle Rebalancer - relocates poorly fitting members of drifted circles.

A circle needs rebalancing when its dominant life stage covers less than
the dominance threshold of its members, or when it is below the minimum
size. Core members (dominant life stage, confident classification) stay;
each peripheral member is offered a strictly better circle elsewhere.

Relocation opens a transition window: the new membership is active
immediately, the old one stays active and a durable scheduled task
deactivates it once the grace period has elapsed.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from core.config_loader import MatchingConfig, TransitionConfig
from core.exceptions import RepositoryWriteError
from core.interfaces import DEACTIVATE_MEMBERSHIP, CircleRepository
from core.matcher.models import CircleMatch, CircleSnapshot, MatchingRunStats, UserProfile
from core.scorer import CompatibilityScorer

logger = logging.getLogger(__name__)


def dominant_life_stage(members: Sequence[UserProfile]) -> Tuple[Optional[str], float]:
    """Most common life stage and its share of all members."""
    if not members:
        return None, 0.0
    counts = Counter(m.life_stage for m in members if m.life_stage)
    if not counts:
        return None, 0.0
    label, count = counts.most_common(1)[0]
    return label, count / len(members)


def find_best_circle(
    scorer: CompatibilityScorer,
    user: UserProfile,
    circles: Sequence[CircleSnapshot],
    max_circle_size: int,
    exclude_circle_ids: Optional[Set[Any]] = None
) -> Optional[CircleMatch]:
    """Highest scoring circle with spare capacity, or None when nothing qualifies."""
    best: Optional[CircleMatch] = None
    for circle in circles:
        if exclude_circle_ids and circle.id in exclude_circle_ids:
            continue
        if circle.member_count >= max_circle_size:
            continue  # Skip full circles
        if user.id in circle.member_ids:
            continue

        score = scorer.score(user, circle.members)
        if best is None or score > best.score:
            best = CircleMatch(circle=circle, score=score)
    return best


class CircleRebalancer:
    """Stage 2 of a matching run."""

    def __init__(
        self,
        repo: CircleRepository,
        scorer: CompatibilityScorer,
        config: MatchingConfig,
        transition_config: TransitionConfig,
        now: Callable[[], datetime]
    ):
        self.repo = repo
        self.scorer = scorer
        self.config = config
        self.transition_config = transition_config
        self._now = now

    def confidence(self, user: UserProfile) -> float:
        if user.life_stage_confidence is None:
            return self.config.default_life_stage_confidence
        return user.life_stage_confidence

    def needs_rebalance(self, circle: CircleSnapshot) -> bool:
        _, share = dominant_life_stage(circle.members)
        return (
            share < self.config.rebalance.dominance_threshold
            or circle.member_count < self.config.min_circle_size
        )

    def partition_members(self, circle: CircleSnapshot) -> Tuple[List[UserProfile], List[UserProfile]]:
        """Split members into (core, peripheral)."""
        dominant, _ = dominant_life_stage(circle.members)
        core, peripheral = [], []
        threshold = self.config.rebalance.core_confidence_threshold
        for member in circle.members:
            if dominant and member.life_stage == dominant and self.confidence(member) > threshold:
                core.append(member)
            else:
                peripheral.append(member)
        return core, peripheral

    def rebalance(
        self,
        circles: List[CircleSnapshot],
        active_counts: Dict[Any, int],
        stats: MatchingRunStats
    ) -> None:
        """
        Rebalance every marked circle in ``circles``.

        Args:
            circles: Snapshot of circles with members; updated in place when
                a member gains a new membership
            active_counts: user_id -> number of active memberships
            stats: Run counters
        """
        for circle in circles:
            stats.circles_checked += 1
            if not self.needs_rebalance(circle):
                continue

            _, share = dominant_life_stage(circle.members)
            logger.info(
                f"Rebalancing circle: {circle.name} "
                f"(members={circle.member_count}, dominant share={share:.0%})"
            )
            stats.circles_rebalanced += 1

            _, peripheral = self.partition_members(circle)
            for member in peripheral:
                self._relocate(member, circle, circles, active_counts, stats)

    def _relocate(
        self,
        member: UserProfile,
        current: CircleSnapshot,
        circles: List[CircleSnapshot],
        active_counts: Dict[Any, int],
        stats: MatchingRunStats
    ) -> None:
        if active_counts.get(member.id, 0) > 1:
            logger.debug(f"User {member.id} is already in a transition window, skipping")
            return

        if self.repo.has_pending_transition(member.id):
            logger.debug(f"User {member.id} has a pending transition, skipping")
            return

        best = find_best_circle(
            self.scorer,
            member,
            circles,
            self.config.max_circle_size,
            exclude_circle_ids={current.id},
        )
        if best is None or best.score <= self.config.rebalance.relocation_threshold:
            return

        try:
            self.repo.add_membership(member.id, best.circle.id)
        except RepositoryWriteError as e:
            logger.error(f"Failed to add user {member.id} to circle {best.circle.id}: {e}")
            stats.write_errors.append(f"add_membership({member.id}, {best.circle.id}): {e}")
            return
        stats.membership_writes += 1

        due_at = self._now() + timedelta(hours=self.transition_config.grace_hours)
        try:
            self.repo.schedule_task(
                DEACTIVATE_MEMBERSHIP,
                {'user_id': str(member.id), 'circle_id': str(current.id)},
                due_at,
            )
        except RepositoryWriteError as e:
            logger.error(f"Failed to schedule deactivation for user {member.id}: {e}")
            stats.write_errors.append(f"schedule_task({member.id}, {current.id}): {e}")
            # A relocation without a scheduled deactivation is rolled back
            try:
                self.repo.deactivate_membership(member.id, best.circle.id)
                stats.membership_writes += 1
            except RepositoryWriteError as undo_error:
                logger.error(f"Failed to undo membership for user {member.id}: {undo_error}")
                stats.write_errors.append(f"deactivate_membership({member.id}, {best.circle.id}): {undo_error}")
            return

        best.circle.members.append(member)
        active_counts[member.id] = active_counts.get(member.id, 0) + 1
        stats.transitions_started += 1
        logger.info(
            f"Initiated transition for {member.display_name} from {current.name} "
            f"to {best.circle.name} (score={best.score:.2f}, old membership ends {due_at.isoformat()})"
        )
