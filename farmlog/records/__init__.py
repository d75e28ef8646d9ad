"""Log records and their transcoding between store, wire and persistence shapes."""

from .envelope import Field, now_stamp
from .log import SEEDING_TYPE, LogRecord, default_record
from .transcoder import create, from_persistence, from_wire, to_persistence, to_wire

__all__ = [
    "Field",
    "LogRecord",
    "SEEDING_TYPE",
    "create",
    "default_record",
    "from_persistence",
    "from_wire",
    "now_stamp",
    "to_persistence",
    "to_wire",
]
