import contextlib
import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from database.database import get_session_factory
from database.repositories import (
    CircleMembershipRepository,
    LocationCacheRepository,
    ScheduledTaskRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class CircleUnitOfWork:
    """Repositories sharing one Session."""

    def __init__(self, session: Session):
        self.session = session
        self.users = UserRepository(session)
        self.circles = CircleMembershipRepository(session)
        self.locations = LocationCacheRepository(session)
        self.tasks = ScheduledTaskRepository(session)


@contextlib.contextmanager
def circle_uow(session_factory: Optional[sessionmaker] = None):
    """Per-unit-of-work transaction scope.

    Yields a CircleUnitOfWork bound to a fresh Session. Commits on success,
    rolls back on exception, always closes.

    Usage:
        with circle_uow() as uow:
            circle = uow.circles.create_circle(name, description, 5.0)
        # commit happens automatically on successful exit
    """
    session = (session_factory or get_session_factory())()
    try:
        yield CircleUnitOfWork(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
