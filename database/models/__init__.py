from .base import Base, JsonType
from .user import User, SpendingPattern
from .circle import Circle, CircleMembership
from .location import LocationCache
from .scheduled_task import ScheduledTask

__all__ = [
    'Base',
    'JsonType',
    'User',
    'SpendingPattern',
    'Circle',
    'CircleMembership',
    'LocationCache',
    'ScheduledTask',
]
