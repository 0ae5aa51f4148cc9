"""Pipeline execution modules for the circle matching engine."""

from .runner import run_matching_algorithm, run_transitions, run_warm_cache, MatchingRunResult

__all__ = ['run_matching_algorithm', 'run_transitions', 'run_warm_cache', 'MatchingRunResult']
