"""Shared scheduling helpers.

Provides common utilities used by the capacity calculator, the analyzer,
the smart scheduler and the command interpreter:
- Time-of-day parsing and minute arithmetic
- Working-day, holiday and lunch-window checks
- Intensity-mode capacity fractions
- Interval merging and first-fit gap search
- Habit and calendar blocks expressed as minutes within a day
"""

import calendar
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta

from taskpilot.core.config import settings
from taskpilot.schemas.schedule import SchedulingPreferences, TimeWindow, WorkingSchedule
from taskpilot.schemas.task import BlockedInterval, HabitSnapshot, TaskSnapshot

MINUTES_PER_DAY = 24 * 60

# Fraction of a day's available minutes each intensity mode may fill
INTENSITY_FRACTIONS: dict[str, float] = {
    "relaxed": 0.60,
    "balanced": 0.75,
    "intense": 0.90,
    "deadline-driven": 1.00,
}

# One step down / up the intensity ladder, used by recommendations
LOWER_INTENSITY: dict[str, str] = {
    "deadline-driven": "intense",
    "intense": "balanced",
    "balanced": "relaxed",
}
HIGHER_INTENSITY: dict[str, str] = {
    "relaxed": "balanced",
    "balanced": "intense",
    "intense": "deadline-driven",
}

PREFERRED_TIME_WINDOWS: dict[str, tuple[str, str]] = {
    "morning": ("00:00", "12:00"),
    "afternoon": ("12:00", "17:00"),
    "evening": ("17:00", "23:59"),
}

Interval = tuple[int, int]


def parse_hhmm(value: str) -> int:
    """Convert "HH:MM" to minutes after midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def at_minutes(day: date, minutes: int) -> datetime:
    """Naive local datetime ``minutes`` after midnight of ``day``."""
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def minutes_into_day(moment: datetime, day: date) -> int:
    """Offset of ``moment`` from midnight of ``day``, clamped to the day."""
    delta = int((moment - datetime.combine(day, time.min)).total_seconds() // 60)
    return min(max(delta, 0), MINUTES_PER_DAY)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each day of the inclusive range; nothing when ``end < start``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def add_months(day: date, months: int) -> date:
    """Calendar-month arithmetic, clamping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def capacity_fraction(intensity_mode: str) -> float:
    return INTENSITY_FRACTIONS.get(intensity_mode, INTENSITY_FRACTIONS["balanced"])


def holiday_set(working_schedule: WorkingSchedule, holidays: Iterable[date] | None = None) -> set[date]:
    return set(working_schedule.holidays) | set(holidays or ())


def is_working_day(day: date, working_schedule: WorkingSchedule, holidays: Iterable[date] | None = None) -> bool:
    """True when ``day`` is in the working-day set and not a holiday."""
    if day.weekday() not in working_schedule.working_days:
        return False
    return day not in holiday_set(working_schedule, holidays)


def working_window(working_schedule: WorkingSchedule) -> Interval:
    """Working hours as minutes after midnight. An inverted window is empty."""
    start = parse_hhmm(working_schedule.start)
    end = parse_hhmm(working_schedule.end)
    return start, max(start, end)


def lunch_window(working_schedule: WorkingSchedule, override: TimeWindow | None = None) -> Interval | None:
    """The lunch break clipped to working hours, or None when it falls outside them."""
    lunch = override or working_schedule.lunch_break
    if lunch is None:
        return None
    work_start, work_end = working_window(working_schedule)
    start = max(parse_hhmm(lunch.start), work_start)
    end = min(parse_hhmm(lunch.end), work_end)
    if end <= start:
        return None
    return start, end


def available_minutes(
    day: date,
    working_schedule: WorkingSchedule,
    holidays: Iterable[date] | None = None,
    lunch_override: TimeWindow | None = None,
) -> int:
    """Working span minus lunch; zero on non-working days and holidays."""
    if not is_working_day(day, working_schedule, holidays):
        return 0
    return working_span_minutes(working_schedule, lunch_override)


def working_span_minutes(working_schedule: WorkingSchedule, lunch_override: TimeWindow | None = None) -> int:
    work_start, work_end = working_window(working_schedule)
    lunch = lunch_window(working_schedule, lunch_override)
    lunch_minutes = lunch[1] - lunch[0] if lunch else 0
    return max(0, work_end - work_start - lunch_minutes)


def task_interval(task: TaskSnapshot) -> tuple[datetime, datetime] | None:
    """The placed interval of a task, defaulting the end to start + estimate."""
    if task.scheduled_start is None:
        return None
    end = task.scheduled_end
    if end is None:
        end = task.scheduled_start + timedelta(minutes=max(0, task.estimated_minutes))
    return task.scheduled_start, end


def scheduled_minutes(task: TaskSnapshot) -> int:
    """Minutes a placed task occupies on its start day."""
    if task.scheduled_start is None:
        return 0
    if task.scheduled_end is None:
        return max(0, task.estimated_minutes)
    span = (task.scheduled_end - task.scheduled_start).total_seconds() / 60
    return max(1, round(span))


def habit_block(habit: HabitSnapshot, day: date) -> BlockedInterval | None:
    """The time a habit occupies on ``day``, if it applies that day."""
    if not habit.applies_on(day) or habit.estimated_minutes <= 0:
        return None
    start = at_minutes(day, parse_hhmm(habit.scheduled_time))
    return BlockedInterval(
        start=start,
        end=start + timedelta(minutes=habit.estimated_minutes),
        source="habit",
        title=habit.title,
    )


def habit_blocks(habits: Iterable[HabitSnapshot], start: date, end: date) -> list[BlockedInterval]:
    blocks: list[BlockedInterval] = []
    for day in iter_days(start, end):
        for habit in habits:
            block = habit_block(habit, day)
            if block is not None:
                blocks.append(block)
    return blocks


def clip_to_day(start: datetime, end: datetime, day: date) -> Interval | None:
    """Part of [start, end) that falls on ``day``, as minutes after midnight."""
    day_start = datetime.combine(day, time.min)
    if end <= day_start or start >= day_start + timedelta(days=1):
        return None
    lo = minutes_into_day(start, day)
    hi = minutes_into_day(end, day)
    if hi <= lo:
        return None
    return lo, hi


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and coalesce overlapping or touching intervals."""
    merged: list[Interval] = []
    for start, end in sorted(intervals):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def overlap_minutes(intervals: Iterable[Interval], lo: int, hi: int) -> int:
    """Total minutes of the merged ``intervals`` that fall inside [lo, hi)."""
    total = 0
    for start, end in merge_intervals(intervals):
        total += max(0, min(end, hi) - max(start, lo))
    return total


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def first_fit(busy: Iterable[Interval], lo: int, hi: int, length: int) -> int | None:
    """Earliest start in [lo, hi) where ``length`` minutes avoid every busy interval."""
    if length <= 0:
        return None
    cursor = lo
    for start, end in merge_intervals(busy):
        if end <= cursor:
            continue
        if start >= cursor + length:
            break
        cursor = end
    if cursor + length <= hi:
        return cursor
    return None


def default_working_schedule() -> WorkingSchedule:
    """Working schedule built from Settings, used when the caller supplies none."""
    lunch = None
    if settings.has_lunch_break:
        lunch = TimeWindow(start=settings.LUNCH_START, end=settings.LUNCH_END)
    return WorkingSchedule(
        start=settings.WORK_START,
        end=settings.WORK_END,
        working_days=list(settings.WORKING_DAYS),
        lunch_break=lunch,
    )


def overtime_minutes(preferences: SchedulingPreferences) -> int:
    """Overtime allowance per day; zero when overtime is not allowed."""
    if not preferences.allow_overtime:
        return 0
    return int(preferences.max_overtime_hours * 60)


def overtime_built_in(preferences: SchedulingPreferences) -> bool:
    """Deadline-driven mode with overtime allowed adds overtime to every day's budget."""
    return preferences.allow_overtime and preferences.intensity_mode == "deadline-driven"


def day_budget(
    day: date,
    working_schedule: WorkingSchedule,
    preferences: SchedulingPreferences,
    holidays: Iterable[date] | None = None,
) -> int:
    """Minutes of ``day`` the intensity mode allows to be filled, before blocks and overtime."""
    available = available_minutes(day, working_schedule, holidays, preferences.lunch_break)
    if available <= 0:
        return 0
    budget = available * capacity_fraction(preferences.intensity_mode)
    if preferences.max_hours_per_day is not None:
        budget = min(budget, preferences.max_hours_per_day * 60)
    return int(budget)


def busy_intervals_for_day(
    day: date,
    tasks: Iterable[TaskSnapshot],
    habits: Iterable[HabitSnapshot] = (),
    calendar_blocks: Iterable[BlockedInterval] = (),
    exclude_ids: Iterable[str] = (),
) -> list[Interval]:
    """Committed time on ``day``: placed tasks, habit blocks and calendar events.

    Tasks in ``exclude_ids`` are about to be moved and do not count.
    """
    excluded = set(exclude_ids)
    busy: list[Interval] = []
    for task in tasks:
        if task.id in excluded:
            continue
        interval = task_interval(task)
        if interval is None:
            continue
        clipped = clip_to_day(interval[0], interval[1], day)
        if clipped is not None:
            busy.append(clipped)
    for habit in habits:
        block = habit_block(habit, day)
        if block is not None:
            clipped = clip_to_day(block.start, block.end, day)
            if clipped is not None:
                busy.append(clipped)
    for block in calendar_blocks:
        clipped = clip_to_day(block.start, block.end, day)
        if clipped is not None:
            busy.append(clipped)
    return busy


def default_preferences() -> SchedulingPreferences:
    """Scheduler preferences seeded from Settings."""
    return SchedulingPreferences(
        intensity_mode=settings.DEFAULT_INTENSITY_MODE,
        deadline_buffer_days=settings.DEADLINE_BUFFER_DAYS,
        max_overtime_hours=settings.MAX_OVERTIME_HOURS,
    )
