"""Exception types raised by farmlog."""


class FarmlogError(Exception):
    """Base class for all farmlog errors."""


class MalformedInputError(FarmlogError, ValueError):
    """A field value cannot be normalized into its expected shape."""


class SyncError(FarmlogError):
    """A transport failure during pull or push.

    Carries the store indices affected (empty for pull failures), the
    underlying transport exception, and for pushes the per-index failures.
    """

    def __init__(
        self,
        message: str = "Sync failed",
        indices: list[int] | None = None,
        http: BaseException | None = None,
        errors: dict[int, BaseException] | None = None,
    ):
        super().__init__(message)
        self.indices = indices or []
        self.http = http
        self.errors = errors or {}
