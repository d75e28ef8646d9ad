"""Client-side log storage: the in-memory store and its SQLite persistence."""

from .database import LogDatabase
from .log_store import AddLog, Command, LogStore, UpdateLog, UpdateLogs

__all__ = ["AddLog", "Command", "LogDatabase", "LogStore", "UpdateLog", "UpdateLogs"]
