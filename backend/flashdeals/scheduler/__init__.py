"""Background jobs."""

from flashdeals.scheduler.recurrence import RecurrenceScheduler

__all__ = ["RecurrenceScheduler"]
