#!/usr/bin/env python3
"""
Circle Formation - creates a new circle around a user no existing circle fits.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Set

from core.config_loader import MatchingConfig
from core.exceptions import RepositoryWriteError
from core.interfaces import CircleRepository
from core.matcher.models import CircleSnapshot, MatchingRunStats, UserProfile
from core.naming import NamingService
from core.scorer import UserSimilarityCalculator

logger = logging.getLogger(__name__)


class CircleFormation:
    """Selects compatible unmatched users and founds a circle with them."""

    def __init__(
        self,
        repo: CircleRepository,
        naming: NamingService,
        config: MatchingConfig,
        similarity: Optional[UserSimilarityCalculator] = None,
        warm_cache: Optional[Callable[[Sequence[UserProfile]], None]] = None
    ):
        self.repo = repo
        self.naming = naming
        self.config = config
        self.similarity = similarity or UserSimilarityCalculator()
        self.warm_cache = warm_cache

    def select_companions(
        self,
        founder: UserProfile,
        pool: Sequence[UserProfile],
        taken: Set[Any]
    ) -> List[UserProfile]:
        """
        Up to max_circle_size - 1 unmatched users sharing the founder's life
        stage, most similar first. Ties keep the pool order.
        """
        candidates = [
            u for u in pool
            if u.id != founder.id
            and u.id not in taken
            and u.life_stage == founder.life_stage
        ]
        candidates.sort(key=lambda u: self.similarity.calculate(founder, u), reverse=True)
        return candidates[:self.config.max_circle_size - 1]

    def try_form(
        self,
        founder: UserProfile,
        pool: Sequence[UserProfile],
        taken: Set[Any],
        stats: MatchingRunStats
    ) -> Optional[CircleSnapshot]:
        """
        Create a circle for ``founder`` if enough companions exist.

        Users successfully added are put into ``taken``. Returns the new
        circle snapshot, or None if the founder stays unmatched.
        """
        companions = self.select_companions(founder, pool, taken)
        if 1 + len(companions) < self.config.min_circle_size:
            return None

        name = self.naming.circle_name(founder, companions)
        description = self.naming.circle_description(founder, companions)

        try:
            circle_id = self.repo.create_circle(name, description, self.config.max_distance_km)
        except RepositoryWriteError as e:
            logger.error(f"Error creating circle '{name}': {e}")
            stats.write_errors.append(f"create_circle({name}): {e}")
            return None

        circle = CircleSnapshot(
            id=circle_id,
            name=name,
            description=description,
            location_radius_km=self.config.max_distance_km,
        )
        for user in [founder, *companions]:
            try:
                self.repo.add_membership(user.id, circle_id)
            except RepositoryWriteError as e:
                logger.error(f"Error adding user {user.id} to new circle {circle_id}: {e}")
                stats.write_errors.append(f"add_membership({user.id}, {circle_id}): {e}")
                continue
            stats.membership_writes += 1
            circle.members.append(user)
            taken.add(user.id)

        stats.circles_created += 1
        stats.users_in_new_circles += circle.member_count
        logger.info(f"Created new circle: {name} with {circle.member_count} members")

        if self.warm_cache is not None and self.config.warm_cache_on_create:
            self.warm_cache(circle.members)

        return circle
