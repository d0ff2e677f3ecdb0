"""Errors raised by the burndown reconstruction services."""


class BurndownError(Exception):
    """Base class for reconstruction errors."""


class SprintNotFoundError(BurndownError, LookupError):
    """Raised when a sprint id is not present in the store."""

    def __init__(self, sprint_id):
        super().__init__(f"Sprint not found: {sprint_id}")
        self.sprint_id = sprint_id


class NoWorkingDaysError(BurndownError, ValueError):
    """Raised when a date range has no working day left after exclusions.

    This is an evidence gap: the caller must report the sprint as skipped
    instead of writing an empty series.
    """

    def __init__(self, start, end):
        super().__init__(f"No working days between {start} and {end}")
        self.start = start
        self.end = end


class TransientStorageError(BurndownError):
    """Connectivity or timeout failure from the store. Safe to retry."""
