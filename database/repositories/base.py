from typing import Any, List, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable

T = TypeVar("T")


class BaseRepository:
    """Table access over a Session owned by the unit of work.

    Repositories never commit; the enclosing ``circle_uow`` decides.
    """

    def __init__(self, session: Session):
        self.db = session

    def _all(self, stmt: Executable) -> List[Any]:
        return list(self.db.execute(stmt).scalars().all())

    def _persist(self, entity: T) -> T:
        """Add and flush so database defaults (ids, timestamps) are populated."""
        self.db.add(entity)
        self.db.flush()
        return entity
