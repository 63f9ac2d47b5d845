"""Exceptions raised by the calendar sync pipeline."""


class CalendarSyncError(Exception):
    """Base class for sync pipeline errors."""


class FetchError(CalendarSyncError):
    """The calendar page could not be loaded (transport error, non-200 or empty body)."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(CalendarSyncError):
    """The page could not be parsed as markup at all."""


class CandidateParseError(CalendarSyncError):
    """A single event container could not be turned into a record."""

    def __init__(self, row_id: str, reason: str):
        super().__init__(f"Event row '{row_id}': {reason}")
        self.row_id = row_id
        self.reason = reason


class EmptyBatchError(CalendarSyncError):
    """The page parsed but contained no events."""


class StoreError(CalendarSyncError):
    """A read from a backend store failed."""
