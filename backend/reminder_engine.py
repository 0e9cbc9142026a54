import logging
import re
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")

# Minutes either side of a dose in which a check still announces it.
DUE_TOLERANCE_MINUTES = 1

NO_MEDICATIONS_SUMMARY = "You have no medications scheduled today."

Clock = Callable[[], datetime]


def normalize_hhmm(value: str) -> str:
    """Normalize time values into HH:MM."""
    if not value:
        return ""
    value = value.strip()
    match = HHMM_PATTERN.match(value)
    if not match:
        return value
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        return value
    return f"{hour:02d}:{minute:02d}"

def parse_hhmm(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Return (hour, minute) for a HH:MM string, or None when malformed."""
    if not isinstance(value, str):
        return None
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute

def format_hhmm(dt: datetime) -> str:
    return f"{dt.hour:02d}:{dt.minute:02d}"

def format_hhmm_for_voice(value: str) -> str:
    """Render HH:MM in human voice format, e.g. 08:00 -> 8:00 AM."""
    parsed = parse_hhmm(value)
    if not parsed:
        return value
    hour, minute = parsed
    meridiem = "AM" if hour < 12 else "PM"
    hour_12 = hour % 12 or 12
    return f"{hour_12}:{minute:02d} {meridiem}"

def is_active(medication: dict) -> bool:
    return medication.get("active", True) is not False


class ReminderEngine:
    """Evaluates which medications should be announced and what to say.

    The engine holds no timers. A scheduler pushes the latest medication
    list with ``set_medications`` and asks for due items on each tick.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or datetime.now
        self.medications: List[dict] = []

    def set_medications(self, medications: List[dict]):
        self.medications = list(medications or [])

    def current_hhmm(self) -> str:
        return format_hhmm(self.clock())

    def _scheduled_today(self, medication: dict, now: datetime) -> Optional[datetime]:
        parsed = parse_hhmm(medication.get("time"))
        if parsed is None:
            logger.warning(
                "Skipping medication %s with malformed time %r",
                medication.get("id") or medication.get("name"),
                medication.get("time")
            )
            return None
        hour, minute = parsed
        return now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    def _next_occurrence(self, medication: dict, now: datetime) -> Optional[datetime]:
        scheduled = self._scheduled_today(medication, now)
        if scheduled is None:
            return None
        # Already passed today, so the next dose is tomorrow.
        if scheduled < now:
            scheduled += timedelta(days=1)
        return scheduled

    def _schedulable(self) -> List[dict]:
        return [m for m in self.medications if is_active(m)]

    def is_due_soon(self, medication: dict, window_minutes: float = 5) -> bool:
        now = self.clock()
        scheduled = self._scheduled_today(medication, now)
        if scheduled is None:
            return False
        diff_minutes = abs((scheduled - now).total_seconds()) / 60
        already_reminded = medication.get("last_reminded_at") == format_hhmm(now)
        return diff_minutes <= window_minutes and not already_reminded

    def already_alerted(self, medication: dict, now: Optional[datetime] = None) -> bool:
        """True when today's stamp falls inside this dose's tolerance window."""
        now = now or self.clock()
        if medication.get("last_reminded_on") != now.date().isoformat():
            return False
        stamp = parse_hhmm(medication.get("last_reminded_at"))
        dose = parse_hhmm(medication.get("time"))
        if stamp is None or dose is None:
            return False
        gap = abs((stamp[0] * 60 + stamp[1]) - (dose[0] * 60 + dose[1]))
        return gap <= DUE_TOLERANCE_MINUTES

    def check_all_due_now(self) -> List[dict]:
        now = self.clock()
        current_time = format_hhmm(now)
        due = []
        seen = set()
        for medication in self._schedulable():
            key = medication.get("id") or id(medication)
            if key in seen or self.already_alerted(medication, now):
                continue
            exact = (
                normalize_hhmm(medication.get("time") or "") == current_time
                and medication.get("last_reminded_at") != current_time
            )
            if exact or self.is_due_soon(medication, DUE_TOLERANCE_MINUTES):
                seen.add(key)
                due.append(medication)
        if due:
            logger.info("%d medication(s) due at %s", len(due), current_time)
        return due

    def generate_reminder_text(self, medication: dict) -> str:
        message = f"It's time for your {medication.get('name')}"
        if medication.get("dosage"):
            message += f". Please take {medication['dosage']}"
        if medication.get("notes"):
            message += f". Remember: {medication['notes']}"
        message += ". Please take your medication now."
        return message

    def get_upcoming(self, hours_ahead: float = 2) -> List[dict]:
        now = self.clock()
        upcoming = []
        for medication in self._schedulable():
            occurrence = self._next_occurrence(medication, now)
            if occurrence is None:
                continue
            hours_diff = (occurrence - now).total_seconds() / 3600
            if 0 <= hours_diff <= hours_ahead:
                upcoming.append(medication)
        # Ordered by clock time, not by the projected datetime.
        return sorted(upcoming, key=lambda m: parse_hhmm(m.get("time")))

    def get_next_reminder(self) -> Optional[dict]:
        now = self.clock()
        best = None
        best_minutes = None
        for medication in self._schedulable():
            occurrence = self._next_occurrence(medication, now)
            if occurrence is None:
                continue
            minutes_until = (occurrence - now).total_seconds() / 60
            if best_minutes is None or minutes_until < best_minutes:
                best = medication
                best_minutes = minutes_until
        return best

    def get_daily_schedule_summary(self) -> str:
        scheduled = [m for m in self._schedulable() if parse_hhmm(m.get("time")) is not None]
        if not scheduled:
            return NO_MEDICATIONS_SUMMARY
        scheduled.sort(key=lambda m: parse_hhmm(m.get("time")))
        items = [f"{m.get('name')} at {normalize_hhmm(m.get('time'))}" for m in scheduled]
        return f"Today's medications: {', '.join(items)}."
