"""State file persistence: schema, load/save and the periodic flusher."""

from .scheduler import PersistenceScheduler
from .state_store import StateStore

__all__ = [
    "PersistenceScheduler",
    "StateStore",
]
