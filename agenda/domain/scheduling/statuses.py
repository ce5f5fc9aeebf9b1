from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    FINISHED = "Finished"
    CANCELED = "Canceled"
    PROBLEM = "Problem"


# Statuses that receive time-based reminders
REMINDER_ELIGIBLE_STATUSES = frozenset(
    {AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value}
)
