import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from database.models import ScheduledTask
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

PENDING = 'pending'
DONE = 'done'
FAILED = 'failed'


class ScheduledTaskRepository(BaseRepository):
    def create(
        self,
        task_type: str,
        payload: Dict[str, Any],
        due_at: datetime,
        user_id: Optional[Any] = None
    ) -> ScheduledTask:
        task = ScheduledTask(
            task_type=task_type,
            payload=dict(payload),
            user_id=user_id,
            due_at=due_at,
            status=PENDING,
            attempts=0,
        )
        return self._persist(task)

    def has_pending(self, task_type: str, user_id: Any) -> bool:
        stmt = select(ScheduledTask.id).where(
            ScheduledTask.task_type == task_type,
            ScheduledTask.user_id == user_id,
            ScheduledTask.status == PENDING
        ).limit(1)
        return self.db.execute(stmt).first() is not None

    def list_due(self, now: datetime, limit: int = 100) -> List[ScheduledTask]:
        stmt = select(ScheduledTask).where(
            ScheduledTask.status == PENDING,
            ScheduledTask.due_at <= now
        ).order_by(ScheduledTask.due_at.asc()).limit(limit)
        return self._all(stmt)

    def mark_done(self, task_id: Any) -> bool:
        task = self.db.get(ScheduledTask, task_id)
        if task is None:
            return False
        task.status = DONE
        task.completed_at = datetime.now(timezone.utc)
        task.last_error = None
        return True

    def mark_failed(self, task_id: Any, error: str, max_attempts: int) -> bool:
        task = self.db.get(ScheduledTask, task_id)
        if task is None:
            return False
        task.attempts = (task.attempts or 0) + 1
        task.last_error = error
        if task.attempts >= max_attempts:
            task.status = FAILED
            task.completed_at = datetime.now(timezone.utc)
            logger.warning(f"Task {task_id} failed permanently after {task.attempts} attempts: {error}")
        return True
