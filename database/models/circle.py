import uuid

from sqlalchemy import Column, Text, Float, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base
from .user import utcnow


class Circle(Base):
    """
    A savings circle. Circles are never hard-deleted; the cohesion columns
    are rewritten by every matching run.
    """
    __tablename__ = 'circles'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    location_radius_km = Column(Float, nullable=False, default=5.0)

    # Geographic cohesion check
    needs_split = Column(Boolean, nullable=False, default=False)
    mean_member_distance_km = Column(Float)
    cohesion_checked_at = Column(TIMESTAMP(timezone=True))

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    memberships = relationship("CircleMembership", back_populates="circle")


class CircleMembership(Base):
    """
    (user, circle) pair. A user normally has one active membership and
    two while a transition window is open.
    """
    __tablename__ = 'circle_memberships'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    circle_id = Column(Uuid(as_uuid=True), ForeignKey('circles.id', ondelete='CASCADE'), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    left_at = Column(TIMESTAMP(timezone=True))

    user = relationship("User", back_populates="memberships")
    circle = relationship("Circle", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('user_id', 'circle_id', name='uq_circle_membership'),
        Index('idx_circle_memberships_active', 'circle_id', 'is_active'),
    )
