"""Data-store collaborator: SQL and in-memory implementations."""

from hrdesk.storage.memory import MemoryDataStore
from hrdesk.storage.repository import DataStore, Entity, SqlDataStore

__all__ = ["DataStore", "Entity", "MemoryDataStore", "SqlDataStore"]
