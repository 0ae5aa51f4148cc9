import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import select, func

from database.models import User, SpendingPattern, LocationCache
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository):
    def list_users(
        self,
        has_postal_code: bool = True,
        has_life_stage: bool = True,
        exclude_user_ids: Optional[Iterable[Any]] = None,
        default_confidence: float = 0.5
    ) -> List[User]:
        stmt = select(User)

        if has_postal_code:
            stmt = stmt.where(User.postal_code.is_not(None), User.postal_code != '')
        if has_life_stage:
            stmt = stmt.where(User.life_stage.is_not(None), User.life_stage != '')

        excluded = list(exclude_user_ids or [])
        if excluded:
            stmt = stmt.where(User.id.not_in(excluded))

        stmt = stmt.order_by(
            func.coalesce(User.life_stage_confidence, default_confidence).desc(),
            User.created_at.asc(),
            User.id.asc()
        )
        return self._all(stmt)

    def list_spending_patterns(self, user_ids: Iterable[Any]) -> List[SpendingPattern]:
        ids = list(user_ids)
        if not ids:
            return []
        stmt = select(SpendingPattern).where(
            SpendingPattern.user_id.in_(ids)
        ).order_by(
            SpendingPattern.confidence_score.desc(),
            SpendingPattern.frequency_score.desc()
        )
        return self._all(stmt)

    def list_uncached_postal_codes(self) -> List[str]:
        """Distinct raw postal codes of users; normalization happens in the caller."""
        stmt = select(User.postal_code).where(
            User.postal_code.is_not(None),
            User.postal_code != ''
        ).distinct()
        codes = self._all(stmt)

        cached = set(self._all(select(LocationCache.postal_code)))
        return [c for c in codes if "".join(c.split()).upper() not in cached]
