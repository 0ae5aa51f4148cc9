"""
SqlCircleRepository against an in-memory SQLite database.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from core.config_loader import MatchingConfig
from core.exceptions import RepositoryReadError, RepositoryWriteError
from core.geo.distance import DistanceCalculator
from core.geo.models import Coordinates
from core.interfaces import DEACTIVATE_MEMBERSHIP
from core.matcher.orchestrator import MatchingOrchestrator
from core.naming import NamingService
from core.scorer import CompatibilityScorer
from database.database import db_session_scope, make_engine, make_session_factory
from database.models import Circle, CircleMembership, SpendingPattern, User
from database.repository import SqlCircleRepository, as_uuid
from tests import SQLITE_URL

pytestmark = pytest.mark.db

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def add_user(session_factory, email, postal_code="M5V 2T6", life_stage="young_professionals",
             confidence=0.9, minutes=0, categories=()):
    with db_session_scope(session_factory) as session:
        user = User(
            email=email,
            full_name=email.split("@")[0].title(),
            postal_code=postal_code,
            life_stage=life_stage,
            life_stage_confidence=confidence,
            shopping_frequency="weekly",
            created_at=BASE + timedelta(minutes=minutes),
        )
        session.add(user)
        session.flush()
        for i, category in enumerate(categories):
            session.add(SpendingPattern(
                user_id=user.id,
                category=category,
                frequency_score=0.5,
                average_amount=40.0,
                confidence_score=0.9 - i * 0.1,
            ))
        return user.id


class TestUserReads:

    def test_list_users_filters_and_orders(self, session_factory, sql_repo):
        low = add_user(session_factory, "low@example.com", confidence=0.6, minutes=1)
        unknown = add_user(session_factory, "unknown@example.com", confidence=None, minutes=2)
        high_late = add_user(session_factory, "late@example.com", confidence=0.9, minutes=5)
        high_early = add_user(session_factory, "early@example.com", confidence=0.9, minutes=3)
        add_user(session_factory, "nocode@example.com", postal_code=None)
        add_user(session_factory, "blank@example.com", postal_code="")
        add_user(session_factory, "nostage@example.com", life_stage=None)

        users = sql_repo.list_users()

        assert [u.id for u in users] == [high_early, high_late, low, unknown]
        assert users[0].full_name == "Early"
        assert users[0].spending_patterns == []

    def test_list_users_excludes_ids(self, session_factory, sql_repo):
        keep = add_user(session_factory, "keep@example.com")
        drop = add_user(session_factory, "drop@example.com")

        users = sql_repo.list_users(exclude_user_ids={str(drop)})

        assert [u.id for u in users] == [keep]

    def test_list_spending_patterns(self, session_factory, sql_repo):
        user_id = add_user(session_factory, "a@example.com", categories=("organic-focused", "bulk-buyer"))

        patterns = sql_repo.list_spending_patterns(user_id)

        assert [p.category for p in patterns] == ["organic-focused", "bulk-buyer"]
        assert patterns[0].frequency == 0.5
        assert patterns[0].average_amount == 40.0


class TestMemberships:

    def test_add_list_and_deactivate(self, session_factory, sql_repo):
        user_id = add_user(session_factory, "a@example.com")
        circle_id = sql_repo.create_circle("Toronto Families", "desc", 5.0)

        sql_repo.add_membership(user_id, circle_id)
        assert sql_repo.list_active_memberships() == [(user_id, circle_id)]

        assert sql_repo.deactivate_membership(user_id, circle_id) is True
        assert sql_repo.deactivate_membership(user_id, circle_id) is False
        assert sql_repo.list_active_memberships() == []

        with db_session_scope(session_factory) as session:
            row = session.query(CircleMembership).one()
            assert row.left_at is not None

    def test_rejoin_reactivates_existing_row(self, session_factory, sql_repo):
        user_id = add_user(session_factory, "a@example.com")
        circle_id = sql_repo.create_circle("Circle", None, 5.0)
        sql_repo.add_membership(user_id, circle_id)
        sql_repo.deactivate_membership(user_id, circle_id)

        sql_repo.add_membership(str(user_id), str(circle_id))

        with db_session_scope(session_factory) as session:
            rows = session.query(CircleMembership).all()
            assert len(rows) == 1
            assert rows[0].is_active is True
            assert rows[0].left_at is None

    def test_deactivate_unknown_membership(self, sql_repo):
        assert sql_repo.deactivate_membership(uuid.uuid4(), uuid.uuid4()) is False

    def test_circles_with_active_members(self, session_factory, sql_repo):
        a = add_user(session_factory, "a@example.com", categories=("budget-conscious",))
        b = add_user(session_factory, "b@example.com", minutes=1)
        gone = add_user(session_factory, "gone@example.com", minutes=2)
        circle_id = sql_repo.create_circle("Toronto Young Professionals", None, 5.0)
        sql_repo.create_circle("Empty", None, 5.0)
        for user_id in (a, b, gone):
            sql_repo.add_membership(user_id, circle_id)
        sql_repo.deactivate_membership(gone, circle_id)

        (circle,) = sql_repo.list_circles_with_active_members()

        assert circle.id == circle_id
        assert circle.name == "Toronto Young Professionals"
        assert circle.member_ids == {a, b}
        by_id = {m.id: m for m in circle.members}
        assert by_id[a].spending_categories == {"budget-conscious"}
        assert by_id[b].spending_patterns == []

    def test_flag_cohesion(self, session_factory, sql_repo):
        circle_id = sql_repo.create_circle("Circle", None, 5.0)

        sql_repo.flag_circle_cohesion(circle_id, True, 12.5)

        with db_session_scope(session_factory) as session:
            circle = session.get(Circle, circle_id)
            assert circle.needs_split is True
            assert circle.mean_member_distance_km == 12.5
            assert circle.cohesion_checked_at is not None

    def test_flag_cohesion_missing_circle(self, sql_repo):
        with pytest.raises(RepositoryWriteError):
            sql_repo.flag_circle_cohesion(uuid.uuid4(), False, 0.0)


class TestLocationCache:

    def test_upsert_and_get_normalized(self, sql_repo):
        assert sql_repo.get_cached_location("M5V 2T6") is None

        sql_repo.upsert_cached_location("m5v 2t6", Coordinates(43.64, -79.39), city="Toronto", country="CA")
        sql_repo.upsert_cached_location("M5V2T6", Coordinates(43.65, -79.38), city="Toronto", region="Ontario")

        cached = sql_repo.get_cached_location("M5V 2T6")
        assert cached.postal_code == "M5V2T6"
        assert cached.coordinates == Coordinates(43.65, -79.38)
        assert cached.region == "Ontario"
        assert cached.geocoded_at is not None

    def test_uncached_postal_codes(self, session_factory, sql_repo):
        add_user(session_factory, "a@example.com", postal_code="M5V 2T6")
        add_user(session_factory, "b@example.com", postal_code="m5v2t6")
        add_user(session_factory, "c@example.com", postal_code="V6B 1A1")
        add_user(session_factory, "d@example.com", postal_code="K1A 0B1")
        sql_repo.upsert_cached_location("K1A 0B1", Coordinates(45.42, -75.70))

        assert sorted(sql_repo.list_uncached_postal_codes()) == ["M5V2T6", "V6B1A1"]


class TestScheduledTasks:

    def test_schedule_and_complete(self, session_factory, sql_repo):
        user_id = add_user(session_factory, "a@example.com")
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        payload = {'user_id': str(user_id), 'circle_id': str(uuid.uuid4())}

        due_id = sql_repo.schedule_task(DEACTIVATE_MEMBERSHIP, payload, now - timedelta(minutes=1))
        sql_repo.schedule_task(DEACTIVATE_MEMBERSHIP, payload, now + timedelta(hours=48))

        assert sql_repo.has_pending_transition(user_id) is True
        assert sql_repo.has_pending_transition(uuid.uuid4()) is False

        (task,) = sql_repo.list_due_tasks(now)
        assert task['id'] == due_id
        assert task['payload'] == payload
        assert task['attempts'] == 0

        sql_repo.mark_task_done(due_id)
        assert sql_repo.list_due_tasks(now) == []
        assert sql_repo.list_due_tasks(now + timedelta(hours=49))[0]['id'] != due_id

    def test_mark_failed_until_max_attempts(self, sql_repo):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        task_id = sql_repo.schedule_task(DEACTIVATE_MEMBERSHIP, {'user_id': str(uuid.uuid4())}, now)

        sql_repo.mark_task_failed(task_id, "boom", max_attempts=2)
        (task,) = sql_repo.list_due_tasks(now)
        assert task['attempts'] == 1

        sql_repo.mark_task_failed(task_id, "boom", max_attempts=2)
        assert sql_repo.list_due_tasks(now) == []

    def test_list_due_respects_limit(self, sql_repo):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for i in range(3):
            sql_repo.schedule_task(DEACTIVATE_MEMBERSHIP, {'user_id': str(uuid.uuid4())}, now - timedelta(minutes=i))

        due = sql_repo.list_due_tasks(now, limit=2)

        assert len(due) == 2
        assert due[0]['due_at'] < due[1]['due_at']


def test_missing_tables_raise_read_error():
    engine = make_engine(SQLITE_URL)
    repo = SqlCircleRepository(make_session_factory(engine))

    with pytest.raises(RepositoryReadError):
        repo.list_users()
    with pytest.raises(RepositoryWriteError):
        repo.create_circle("Circle", None, 5.0)
    engine.dispose()


def test_as_uuid():
    value = uuid.uuid4()
    assert as_uuid(value) is value
    assert as_uuid(str(value)) == value


def test_matching_run_against_sqlite(session_factory, sql_repo):
    ids = [
        add_user(session_factory, f"user{i}@example.com", postal_code=code, minutes=i, categories=("budget-conscious",))
        for i, code in enumerate(("M5V 2T6", "M5V 3L9", "M5V 1A1"))
    ]
    orchestrator = MatchingOrchestrator(
        sql_repo,
        CompatibilityScorer(DistanceCalculator()),
        NamingService(),
        config=MatchingConfig(read_workers=1),
    )

    first = orchestrator.run()
    second = orchestrator.run()

    assert first.circles_created == 1
    assert first.users_in_new_circles == 3
    assert second.membership_writes == 0
    (circle,) = sql_repo.list_circles_with_active_members()
    assert circle.member_ids == set(ids)
    assert circle.name == "Toronto Young Professionals (Budget Savers)"
