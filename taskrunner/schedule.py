"""
Next-run calculation for interval and calendar schedules.

Both modes are expressed with APScheduler triggers so the date arithmetic
(weekday roll-over, month ends, DST) stays in one well-tested place. The
runner only asks a trigger for its next fire time; it never hands jobs to an
APScheduler scheduler.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskrunner.config import ScheduleConfig, ScheduleMode

logger = logging.getLogger(__name__)

INTERVAL_POLL_SECONDS = 60
CALENDAR_POLL_SECONDS = 300
CALENDAR_GRACE = timedelta(minutes=1)


def next_interval_run(last_run_start: datetime, interval: timedelta) -> datetime:
    """
    Next run of an interval schedule: the previous start plus the interval.

    This is a fixed delay relative to when the last cycle started, not a
    fixed grid, so long executions shift later boundaries.
    """
    trigger = IntervalTrigger(
        seconds=interval.total_seconds(),
        start_date=last_run_start,
        timezone=last_run_start.tzinfo,
    )
    return trigger.get_next_fire_time(last_run_start, last_run_start)


def calendar_triggers(schedule: ScheduleConfig) -> List[CronTrigger]:
    """One cron trigger per configured time, covering all configured days."""
    day_of_week = ",".join(day.cron_name for day in schedule.days)
    return [
        CronTrigger(
            day_of_week=day_of_week,
            hour=at.hour,
            minute=at.minute,
            second=0,
            timezone=schedule.tz,
        )
        for at in schedule.times
    ]


def next_calendar_run(schedule: ScheduleConfig, now: datetime,
                      triggers: Optional[List[CronTrigger]] = None) -> datetime:
    """
    Closest day x time combination strictly after ``now``.

    Each trigger is asked for its next fire time treating ``now`` as the
    previous fire time, which makes an exact match on ``now`` roll over to
    the following week.
    """
    if triggers is None:
        triggers = calendar_triggers(schedule)
    candidates = [t.get_next_fire_time(now, now) for t in triggers]
    return min(c for c in candidates if c is not None)


class ScheduleCalculator:
    """
    Produces execution instants for a ScheduleConfig.

    Interval mode runs the first cycle immediately and then every interval
    after the previous start. Calendar mode waits for the nearest configured
    weekday/time and treats the minute before it as due.
    """

    def __init__(self, schedule: ScheduleConfig):
        self.schedule = schedule
        self._triggers = calendar_triggers(schedule) if self.is_calendar else []

    @property
    def is_calendar(self) -> bool:
        return self.schedule.mode == ScheduleMode.CALENDAR

    @property
    def grace(self) -> timedelta:
        return CALENDAR_GRACE if self.is_calendar else timedelta(0)

    @property
    def poll_seconds(self) -> int:
        return CALENDAR_POLL_SECONDS if self.is_calendar else INTERVAL_POLL_SECONDS

    def first_run(self, now: datetime) -> datetime:
        if self.is_calendar:
            return next_calendar_run(self.schedule, now, self._triggers)
        return now

    def next_run(self, last_run_start: datetime, now: datetime,
                 last_scheduled: Optional[datetime] = None) -> datetime:
        """
        Compute the instant of the next cycle after one has run.

        Args:
            last_run_start: When the cycle that just finished started
            now: Current time
            last_scheduled: The instant that cycle was scheduled for. In
                calendar mode the search starts from the later of this and
                ``now`` so a cycle started early inside the grace window is
                not picked again.
        """
        if not self.is_calendar:
            return next_interval_run(last_run_start, self.schedule.interval)

        reference = now
        if last_scheduled is not None and last_scheduled > now:
            reference = last_scheduled
        return next_calendar_run(self.schedule, reference, self._triggers)

    def is_due(self, next_run: datetime, now: datetime) -> bool:
        """True once ``now`` is inside the grace window before ``next_run``."""
        return now >= next_run - self.grace

    def seconds_until(self, next_run: datetime, now: datetime) -> float:
        """Sleep target for the wait loop: the slot itself, not the window start."""
        return max((next_run - now).total_seconds(), 0.0)
