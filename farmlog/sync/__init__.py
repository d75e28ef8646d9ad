"""Two-way sync of farm logs with a farmOS server.

Server logs are classified against the local store, merged field by field
using each field's change timestamp, and local logs are pushed back.
"""

from .conflict import Classification, LogStatus, classify
from .merge import resolve
from .remote import FarmClient
from .sync_client import LogSync, PushOutcome, SyncResult, SyncStatus

__all__ = [
    "Classification",
    "FarmClient",
    "LogStatus",
    "LogSync",
    "PushOutcome",
    "SyncResult",
    "SyncStatus",
    "classify",
    "resolve",
]
