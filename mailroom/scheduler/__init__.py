"""Deferred notification scheduling and the periodic job host."""

from .deferred import NotificationScheduler
from .models import ProcessDueResult, ScheduleError
from .service import REENGAGE_JOB_ID, SCHEDULED_JOB_ID, SchedulerService

__all__ = [
    "NotificationScheduler",
    "ProcessDueResult",
    "ScheduleError",
    "SchedulerService",
    "SCHEDULED_JOB_ID",
    "REENGAGE_JOB_ID",
]
