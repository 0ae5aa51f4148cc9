import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Text, Float, TIMESTAMP, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    End-user as seen by the matching engine.

    Rows are created by the onboarding flow; life_stage and its confidence
    are filled in by the external classifier.
    """
    __tablename__ = 'users'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    full_name = Column(Text)

    postal_code = Column(Text)
    life_stage = Column(Text)
    life_stage_confidence = Column(Float)
    # daily | weekly | bi-weekly | monthly
    shopping_frequency = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    spending_patterns = relationship("SpendingPattern", back_populates="user", cascade="all, delete-orphan")
    memberships = relationship("CircleMembership", back_populates="user")

    __table_args__ = (
        Index('idx_users_postal_code', 'postal_code'),
    )


class SpendingPattern(Base):
    """
    Per-category spending signature derived from transaction history.
    Read-only to the matching engine.
    """
    __tablename__ = 'spending_patterns'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    category = Column(Text, nullable=False)
    frequency_score = Column(Float, nullable=False, default=0.0)
    average_amount = Column(Float, nullable=False, default=0.0)
    confidence_score = Column(Float, nullable=False, default=0.0)
    last_updated = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="spending_patterns")

    __table_args__ = (
        Index('idx_spending_patterns_user', 'user_id'),
    )
