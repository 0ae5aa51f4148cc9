"""
Tests for the run lock and the shared run entry points.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from core.app_context import AppContext
from core.config_loader import AppConfig
from core.exceptions import PipelineLockedError
from core.interfaces import DEACTIVATE_MEMBERSHIP
from pipeline.control import RunLock
from pipeline.runner import run_matching_algorithm, run_transitions, run_warm_cache
from tests.mocks.factories import make_user
from tests.mocks.in_memory_repository import InMemoryCircleRepository


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / "matching.lock")


@pytest.fixture
def ctx(lock_path):
    config = AppConfig(
        database={'url': 'sqlite://'},
        geocoding={'enabled': False},
        matching={'read_workers': 1},
        lock_file=lock_path,
    )
    return AppContext.build(config, repo=InMemoryCircleRepository())


class TestRunLock:

    def test_acquire_writes_owner_record(self, lock_path):
        lock = RunLock(lock_path)

        assert lock.try_acquire("cli", {"operation": "match"})
        assert lock.held
        owner = lock.owner()
        assert owner["source"] == "cli"
        assert owner["operation"] == "match"
        lock.release()

        assert not lock.held
        assert lock.owner() is None

    def test_second_holder_is_rejected(self, lock_path):
        first = RunLock(lock_path)
        second = RunLock(lock_path)

        with first.hold("scheduler"):
            with pytest.raises(PipelineLockedError, match="source=scheduler"):
                with second.hold("cli"):
                    pass

        with second.hold("cli"):
            assert second.owner()["source"] == "cli"

    def test_corrupt_lock_file(self, lock_path):
        with open(lock_path, "w") as f:
            f.write("{not json")

        assert RunLock(lock_path).owner() is None

    def test_missing_lock_file(self, lock_path):
        assert RunLock(lock_path).owner() is None

    def test_relative_path_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        lock = RunLock("matching.lock")

        assert lock.path == str(tmp_path / "matching.lock")

        # Changing directory afterwards still targets the same file
        other = tmp_path / "elsewhere"
        other.mkdir()
        monkeypatch.chdir(other)
        with lock.hold("cli"):
            with pytest.raises(PipelineLockedError):
                with RunLock(str(tmp_path / "matching.lock")).hold("scheduler"):
                    pass


class TestRunMatchingAlgorithm:

    def test_successful_run(self, ctx):
        for code in ("M5V 2T6", "M5V 3L9", "M5V 1A1"):
            ctx.repo.add_user(make_user(postal_code=code))
        events = []

        result = run_matching_algorithm(ctx, status_callback=events.append, source="test")

        assert result.success
        assert result.circles_created == 1
        assert result.counts['users_in_new_circles'] == 3
        assert result.errors == []
        assert events[-1].stage == "cohesion"

    def test_disabled_matching_is_skipped(self, ctx):
        ctx.config.matching.enabled = False
        ctx.repo.add_user(make_user())

        result = run_matching_algorithm(ctx)

        assert result.success
        assert ctx.repo.calls == []

    def test_concurrent_run_is_refused(self, ctx, lock_path):
        ctx.repo.add_user(make_user())

        with RunLock(lock_path).hold("scheduler"):
            result = run_matching_algorithm(ctx, source="cli")

        assert not result.success
        assert "already running" in result.error
        assert ctx.repo.calls == []

    def test_read_failure_becomes_failed_result(self, ctx, lock_path):
        ctx.repo.fail_reads.add("list_active_memberships")

        result = run_matching_algorithm(ctx)

        assert not result.success
        assert "list_active_memberships" in result.error
        # Lock released after the failure
        check = RunLock(lock_path)
        assert check.try_acquire("check")
        check.release()

    def test_write_errors_reported(self, ctx):
        for code in ("M5V 2T6", "M5V 3L9", "M5V 1A1"):
            ctx.repo.add_user(make_user(postal_code=code))
        ctx.repo.fail_writes.add("add_membership")

        result = run_matching_algorithm(ctx)

        assert result.success
        assert len(result.errors) == 9
        assert result.users_left_unmatched == 3


class TestRunTransitionsAndWarmCache:

    def test_run_transitions_counts(self, ctx):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        ctx.repo.memberships[("u1", "c1")] = True
        ctx.repo.schedule_task(DEACTIVATE_MEMBERSHIP, {'user_id': 'u1', 'circle_id': 'c1'}, now - timedelta(hours=1))

        result = run_transitions(ctx, now=now)

        assert result.success
        assert result.counts == {'due': 1, 'completed': 1, 'already_inactive': 0, 'failed': 0}

    def test_run_transitions_failure(self, ctx):
        ctx.repo.fail_reads.add("list_due_tasks")

        result = run_transitions(ctx)

        assert not result.success
        assert "list_due_tasks" in result.error

    def test_warm_cache_without_provider(self, ctx):
        ctx.repo.add_user(make_user(postal_code="M5V 2T6"))

        result = run_warm_cache(ctx)

        assert result.success
        assert result.counts == {'uncached': 1, 'resolved': 0}


def test_lock_info_is_json(lock_path):
    with RunLock(lock_path).hold("cli", {"operation": "match"}):
        with open(lock_path) as f:
            assert json.load(f)["operation"] == "match"
