"""Ride change notification channels and feeds."""

from .channels import CHANNEL_RIDE_UPDATES, RideChange
from .feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed

__all__ = [
    "CHANNEL_RIDE_UPDATES",
    "ChangeFeed",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "RideChange",
]
