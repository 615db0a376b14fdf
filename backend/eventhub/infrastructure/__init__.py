"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import RedisClient

__all__ = ['RedisClient']
