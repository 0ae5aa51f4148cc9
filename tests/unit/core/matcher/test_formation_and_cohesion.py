#!/usr/bin/env python3
"""
Tests for new-circle formation and the geographic cohesion check.
"""

import unittest
from unittest.mock import Mock

from core.config_loader import MatchingConfig
from core.geo.distance import DistanceCalculator
from core.matcher.cohesion import CohesionChecker, mean_pairwise_distance
from core.matcher.formation import CircleFormation
from core.matcher.models import MatchingRunStats
from core.naming import NamingService
from tests.mocks.factories import make_circle, make_user
from tests.mocks.in_memory_repository import InMemoryCircleRepository


class TestCircleFormation(unittest.TestCase):

    def setUp(self):
        self.repo = InMemoryCircleRepository()
        self.config = MatchingConfig(min_circle_size=3, max_circle_size=4)
        self.warm_cache = Mock()
        self.formation = CircleFormation(self.repo, NamingService(), self.config, warm_cache=self.warm_cache)

    def test_forms_circle_with_same_life_stage_companions(self):
        founder = make_user()
        pool = [founder, make_user(), make_user(life_stage="retirees"), make_user()]
        taken = set()
        stats = MatchingRunStats()

        circle = self.formation.try_form(founder, pool, taken, stats)

        self.assertIsNotNone(circle)
        self.assertEqual(circle.member_count, 3)
        self.assertNotIn(pool[2].id, circle.member_ids)
        self.assertEqual(taken, circle.member_ids)
        self.assertEqual(self.repo.circles[circle.id]['radius_km'], 5.0)
        self.assertEqual(circle.name, "Toronto Young Professionals (Budget Savers)")
        self.assertEqual(stats.circles_created, 1)
        self.warm_cache.assert_called_once_with(circle.members)

    def test_not_enough_companions(self):
        founder = make_user()
        pool = [founder, make_user(), make_user(life_stage="families")]

        circle = self.formation.try_form(founder, pool, set(), MatchingRunStats())

        self.assertIsNone(circle)
        self.assertEqual(self.repo.circles, {})

    def test_companions_capped_and_ranked_by_similarity(self):
        founder = make_user(frequency="weekly", categories=("budget-conscious",))
        weak = make_user(frequency="monthly", categories=("premium",))
        strong_a = make_user(frequency="weekly", categories=("budget-conscious",))
        strong_b = make_user(frequency="weekly", categories=("budget-conscious", "bulk-buyer"))
        medium = make_user(frequency="monthly", categories=("budget-conscious",))

        companions = self.formation.select_companions(founder, [founder, weak, medium, strong_b, strong_a], set())

        self.assertEqual(companions, [strong_a, strong_b, medium])

    def test_taken_users_excluded(self):
        founder = make_user()
        other = make_user()
        companions = self.formation.select_companions(founder, [founder, other], {other.id})
        self.assertEqual(companions, [])

    def test_create_failure_is_recorded(self):
        self.repo.fail_writes.add("create_circle")
        founder = make_user()
        stats = MatchingRunStats()

        circle = self.formation.try_form(founder, [founder, make_user(), make_user()], set(), stats)

        self.assertIsNone(circle)
        self.assertEqual(len(stats.write_errors), 1)
        self.warm_cache.assert_not_called()


class TestCohesionChecker(unittest.TestCase):

    def setUp(self):
        self.repo = InMemoryCircleRepository()
        self.checker = CohesionChecker(self.repo, DistanceCalculator(), MatchingConfig())

    def test_mean_pairwise_distance(self):
        calc = DistanceCalculator()
        self.assertEqual(mean_pairwise_distance(calc, ["M5V 2T6"]), 0.0)
        self.assertAlmostEqual(mean_pairwise_distance(calc, ["M5V 2T6", "M5V 3L9", "V6B 1A1"]), (1.5 + 50 + 50) / 3)

    def test_dispersed_circle_flagged(self):
        dispersed = self.repo.add_circle(make_circle([
            make_user(postal_code="M5V 2T6"),
            make_user(postal_code="M5V 3L9"),
            make_user(postal_code="V6B 1A1"),
        ]))
        tight = self.repo.add_circle(make_circle([
            make_user(postal_code="M5V 2T6"),
            make_user(postal_code="M5V 3L9"),
        ]))
        stats = MatchingRunStats()

        flagged = self.checker.check([dispersed, tight], stats)

        self.assertEqual(flagged, [dispersed])
        self.assertTrue(self.repo.circles[dispersed.id]['needs_split'])
        self.assertAlmostEqual(self.repo.circles[dispersed.id]['mean_distance_km'], 33.833, places=3)
        self.assertFalse(self.repo.circles[tight.id]['needs_split'])
        self.assertEqual(self.repo.circles[tight.id]['mean_distance_km'], 1.5)
        self.assertEqual(stats.split_candidates, 1)

    def test_threshold_is_radius_times_factor(self):
        # 8 km same-region heuristic exceeds 5 * 1.2 = 6
        circle = self.repo.add_circle(make_circle([make_user(postal_code="M5V 2T6"), make_user(postal_code="M4C 1A1")]))
        self.assertEqual(self.checker.check([circle], MatchingRunStats()), [circle])

        self.checker.config.cohesion_factor = 2.0
        self.assertEqual(self.checker.check([circle], MatchingRunStats()), [])

    def test_write_failure_does_not_stop_check(self):
        self.repo.fail_writes.add("flag_circle_cohesion")
        circle = self.repo.add_circle(make_circle([make_user(postal_code="M5V 2T6"), make_user(postal_code="V6B 1A1")]))
        stats = MatchingRunStats()

        flagged = self.checker.check([circle], stats)

        self.assertEqual(flagged, [circle])
        self.assertEqual(len(stats.write_errors), 1)


if __name__ == '__main__':
    unittest.main()
