"""
Adapters layer - Store implementations and external integrations.
"""

from .fixture import Fixture, load_fixture, save_fixture
from .memory_store import InMemoryStore, InMemoryTransaction
from .roster_api_client import RosterApiClient

__all__ = [
    "Fixture",
    "InMemoryStore",
    "InMemoryTransaction",
    "RosterApiClient",
    "load_fixture",
    "save_fixture",
]
