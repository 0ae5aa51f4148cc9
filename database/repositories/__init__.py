from database.repositories.base import BaseRepository
from database.repositories.user import UserRepository
from database.repositories.circle import CircleMembershipRepository
from database.repositories.location_cache import LocationCacheRepository
from database.repositories.scheduled_task import ScheduledTaskRepository

__all__ = [
    'BaseRepository',
    'UserRepository',
    'CircleMembershipRepository',
    'LocationCacheRepository',
    'ScheduledTaskRepository',
]
