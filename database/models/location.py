from sqlalchemy import Column, Text, Float, TIMESTAMP

from .base import Base
from .user import utcnow


class LocationCache(Base):
    """Geocoded postal codes keyed by normalized code (uppercase, no whitespace)."""
    __tablename__ = 'location_cache'

    postal_code = Column(Text, primary_key=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    city = Column(Text)
    region = Column(Text)
    country = Column(Text)
    geocoded_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
