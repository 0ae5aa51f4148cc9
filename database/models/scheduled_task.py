import uuid

from sqlalchemy import Column, Text, Integer, TIMESTAMP, Index, Uuid

from .base import Base, JsonType
from .user import utcnow


class ScheduledTask(Base):
    """
    Durable deferred action, executed by the transition worker once due.

    Status flow: pending -> done, or pending -> failed after max attempts.
    """
    __tablename__ = 'scheduled_tasks'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_type = Column(Text, nullable=False)
    payload = Column(JsonType, nullable=False, default=dict)
    # Copied from payload for pending-transition lookups
    user_id = Column(Uuid(as_uuid=True))

    due_at = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default='pending')
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(TIMESTAMP(timezone=True))

    __table_args__ = (
        Index('idx_scheduled_tasks_due', 'status', 'due_at'),
        Index('idx_scheduled_tasks_user', 'user_id', 'status'),
    )
