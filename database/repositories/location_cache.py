from datetime import datetime, timezone
from typing import Optional

from database.models import LocationCache
from database.repositories.base import BaseRepository


class LocationCacheRepository(BaseRepository):
    def get(self, postal_code: str) -> Optional[LocationCache]:
        return self.db.get(LocationCache, postal_code)

    def upsert(
        self,
        postal_code: str,
        latitude: float,
        longitude: float,
        city: Optional[str] = None,
        region: Optional[str] = None,
        country: Optional[str] = None
    ) -> LocationCache:
        entry = self.get(postal_code)
        now = datetime.now(timezone.utc)
        if entry is None:
            entry = LocationCache(postal_code=postal_code)
            self.db.add(entry)
        entry.latitude = latitude
        entry.longitude = longitude
        entry.city = city
        entry.region = region
        entry.country = country
        entry.geocoded_at = now
        self.db.flush()
        return entry
