"""
Shift reminders: one an hour before a shift starts, one a quarter of an
hour before it ends.
"""

import logging
import zlib
from datetime import datetime, time, timedelta

from shiftbook.models import ReminderKind, ScheduledReminder, Shift
from shiftbook.notifier import Notifier

logger = logging.getLogger(__name__)

START_LEAD = timedelta(minutes=60)
END_LEAD = timedelta(minutes=15)


def reminder_id(shift_id: str, kind: ReminderKind) -> int:
    """Stable notification id for one of a shift's two reminders."""
    return zlib.crc32(f"{shift_id}:{kind.value}".encode()) & 0x7FFFFFFF


def reminder_ids(shift_id: str) -> list[int]:
    return [reminder_id(shift_id, kind) for kind in ReminderKind]


def _parse_time(hhmm: str) -> time:
    hours, minutes = hhmm.split(":")
    return time(int(hours), int(minutes))


def shift_window(
    shift_date: datetime, start_time: str, end_time: str
) -> tuple[datetime, datetime]:
    """
    Absolute start and end of a shift. An end that is not after the start
    belongs to the next calendar day.
    """
    day = shift_date.date()
    start = datetime.combine(day, _parse_time(start_time))
    end = datetime.combine(day, _parse_time(end_time))
    if end <= start:
        end += timedelta(days=1)
    return start, end


def derive_reminders(
    shift_id: str,
    shift_date: datetime,
    start_time: str,
    end_time: str,
    hospital_name: str,
    now: datetime | None = None,
) -> list[ScheduledReminder]:
    """Reminders for a shift whose fire time is still in the future."""
    now = now or datetime.now()
    start, end = shift_window(shift_date, start_time, end_time)
    candidates = [
        ScheduledReminder(
            id=reminder_id(shift_id, ReminderKind.START),
            shift_id=shift_id,
            kind=ReminderKind.START,
            fire_at=start - START_LEAD,
            title=f"Shift at {hospital_name} in 1 hour",
            body=f"Your shift starts at {start_time}.",
        ),
        ScheduledReminder(
            id=reminder_id(shift_id, ReminderKind.END),
            shift_id=shift_id,
            kind=ReminderKind.END,
            fire_at=end - END_LEAD,
            title=f"Shift at {hospital_name} ends soon",
            body=f"Your shift ends at {end_time}. Remember to log your cases.",
        ),
    ]
    return [reminder for reminder in candidates if reminder.fire_at > now]


class ReminderScheduler:
    """Hands derived reminders to a notifier and cancels them by shift."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    async def request_permission(self) -> bool:
        try:
            return await self.notifier.request_permission()
        except Exception as e:
            logger.error(f"Notification permission request failed: {e}", exc_info=True)
            return False

    async def schedule_for_shift(
        self, shift: Shift, hospital_name: str
    ) -> list[ScheduledReminder]:
        scheduled = []
        for reminder in derive_reminders(
            shift.id, shift.date, shift.start_time, shift.end_time, hospital_name
        ):
            try:
                await self.notifier.schedule(
                    reminder.id, reminder.fire_at, reminder.title, reminder.body
                )
                scheduled.append(reminder)
            except Exception as e:
                logger.error(
                    f"Failed to schedule {reminder.kind.value} reminder for "
                    f"shift {shift.id}: {e}",
                    exc_info=True,
                )
        return scheduled

    async def cancel_for_shift(self, shift_id: str) -> None:
        try:
            await self.notifier.cancel(reminder_ids(shift_id))
        except Exception as e:
            logger.error(
                f"Failed to cancel reminders for shift {shift_id}: {e}",
                exc_info=True,
            )

    async def reschedule(
        self, shift: Shift, hospital_name: str
    ) -> list[ScheduledReminder]:
        await self.cancel_for_shift(shift.id)
        return await self.schedule_for_shift(shift, hospital_name)
