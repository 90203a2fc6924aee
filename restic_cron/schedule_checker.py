"""Cron-based scheduling of backup cycles."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from croniter import croniter


class ScheduleError(ValueError):
    """Raised for an invalid cron expression."""


def cron_iter(schedule: str, start_time: datetime = None) -> croniter:
    """
    Build a croniter for a schedule expression.

    Six-field expressions carry seconds in the first field
    (``0 0 3 * * *`` fires daily at 03:00:00).
    """
    return croniter(schedule.strip(), start_time, second_at_beginning=True)


class ScheduleChecker:
    """Handles evaluation of cron-based backup schedules."""

    @staticmethod
    def next_run_time(schedule: str, current_time: datetime = None) -> datetime:
        """
        Get the next time the schedule fires after ``current_time``.

        Args:
            schedule: Cron schedule string
            current_time: Current time (defaults to now)

        Returns:
            Next scheduled run time
        """
        if current_time is None:
            current_time = datetime.now()

        try:
            cron = cron_iter(schedule, current_time)
            return cron.get_next(datetime)
        except Exception as e:
            raise ScheduleError(f"Error calculating next run time for '{schedule}': {e}")

    @staticmethod
    def validate_schedule_format(schedule: str) -> bool:
        """
        Validate that a schedule string is a valid cron expression.

        Args:
            schedule: Cron schedule string

        Returns:
            True if valid, False otherwise
        """
        try:
            cron_iter(schedule)
            return True
        except Exception:
            return False


class BackupScheduler:
    """
    Runs a job on a cron schedule, one invocation at a time.

    The job runs on the scheduler's own thread, so cycles never overlap.
    Fire times that pass while a job is still running are skipped rather
    than queued.
    """

    def __init__(
        self,
        schedule: str,
        job: Callable[[], object],
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not ScheduleChecker.validate_schedule_format(schedule):
            raise ScheduleError(f"Invalid cron schedule format: '{schedule}'")

        self.schedule = schedule.strip()
        self.job = job
        self.clock = clock
        self.runs = 0
        self._stop_event = threading.Event()
        self.logger = logging.getLogger(__name__)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to exit at its next wake-up."""
        self._stop_event.set()

    def run_job(self) -> None:
        """Invoke the job once, keeping the loop alive if it raises."""
        self.runs += 1
        try:
            self.job()
        except Exception as e:
            self.logger.error(f"Scheduled job raised: {e}", exc_info=True)

    def run(self, run_on_boot: bool = False) -> None:
        """Block and run the job at every fire time until ``stop`` is called."""
        if run_on_boot and not self.stopped:
            self.run_job()

        next_run = ScheduleChecker.next_run_time(self.schedule, self.clock())
        while not self.stopped:
            self.logger.info(f"Next backup scheduled at {next_run.isoformat()}")

            delay = (next_run - self.clock()).total_seconds()
            if delay > 0 and self._stop_event.wait(delay):
                break

            self.run_job()

            now = self.clock()
            following = ScheduleChecker.next_run_time(self.schedule, next_run)
            skipped = 0
            while following <= now:
                skipped += 1
                following = ScheduleChecker.next_run_time(self.schedule, following)
            if skipped:
                self.logger.warning(
                    f"Skipped {skipped} scheduled run(s) that elapsed during the backup"
                )
            next_run = following

        self.logger.info("Scheduler stopped")
