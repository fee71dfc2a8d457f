"""Fanout brokers (in-memory, Redis)."""

from .inmemory import InMemoryFanoutBroker
from .redis import RedisFanoutBroker

__all__ = [
    "InMemoryFanoutBroker",
    "RedisFanoutBroker",
]
