"""
Timer engine.

Each task is either IDLE (no open interval) or RUNNING (exactly one open
interval). Every transition reads the current state and writes inside a
single transaction, with the clock sampled once per operation.

Several tasks may run at the same time; only switch() stops other tasks.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from .db import CategoryRef, ProjectRef, TickrDB
from .errors import AlreadyRunning, NotRunning, ValidationError
from .models import RunningTask, WorkedInterval, to_aware

log = logging.getLogger("tickr.timer")


class TaskState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class TimerEngine:
    """Start/stop state machine over a TickrDB."""

    def __init__(self, db: TickrDB):
        self.db = db

    def state(self, task_id: int) -> TaskState:
        self.db.require_task(task_id)
        if self.db.open_interval_for(task_id) is not None:
            return TaskState.RUNNING
        return TaskState.IDLE

    def start(self, task_id: int) -> WorkedInterval:
        """Open a new interval for an idle task."""
        now = self.db.now()
        with self.db.transaction():
            return self._start(task_id, now)

    def stop(self, task_id: int) -> WorkedInterval:
        """Close the running interval of a task."""
        now = self.db.now()
        with self.db.transaction():
            return self._stop(task_id, now)

    def toggle(self, task_id: int) -> WorkedInterval:
        """Start an idle task or stop a running one."""
        now = self.db.now()
        with self.db.transaction():
            self.db.require_task(task_id)
            if self.db.open_interval_for(task_id) is not None:
                return self._stop(task_id, now)
            return self._start(task_id, now)

    def switch(self, task_id: int) -> WorkedInterval:
        """Stop every other running task, then start this one."""
        now = self.db.now()
        with self.db.transaction():
            self.db.require_task(task_id)
            if self.db.open_interval_for(task_id) is not None:
                raise AlreadyRunning(task_id)
            for interval in self.db.running_intervals():
                log.info(f"Stopping task {interval.task_id} to switch to task {task_id}")
                self._stop(interval.task_id, now)
            return self._start(task_id, now)

    def stop_running(self) -> WorkedInterval:
        """Stop the task reported by currently_running()."""
        now = self.db.now()
        with self.db.transaction():
            running = self.currently_running()
            if running is None:
                raise NotRunning()
            return self._stop(running.task_id, now)

    def currently_running(self) -> Optional[RunningTask]:
        """The most recently started running task, or None."""
        running = self.running_tasks()
        return running[0] if running else None

    def running_tasks(self) -> list[RunningTask]:
        return [
            RunningTask(task_id=i.task_id, interval_id=i.id, started_at=i.start)
            for i in self.db.running_intervals()
        ]

    def add_worked_interval(self, project: ProjectRef, label: str, start: datetime,
                            end: datetime = None,
                            category: CategoryRef = None) -> WorkedInterval:
        """Record past work for a task, creating the task if needed.

        The category is only applied when the task is created here. Leaving
        end out records an interval that is still running.
        """
        now = self.db.now()
        start = to_aware(start)
        end = to_aware(end) if end is not None else None
        if end is not None and end < start:
            raise ValidationError("End time must not be before start time")
        if end is None and start > now:
            raise ValidationError("A running interval cannot start in the future")

        with self.db.transaction():
            task = self.db.find_task(project, label)
            if task is None:
                task = self.db.add_task(project, label, category)
            elif end is None and self.db.open_interval_for(task.id) is not None:
                raise AlreadyRunning(task.id)

            overlaps = self.db.overlapping_intervals(task.id, start, end)
            if overlaps:
                raise ValidationError(
                    f"Interval overlaps {len(overlaps)} existing interval(s) of task {task.id}"
                )
            interval = self.db.insert_interval(task.id, start, end)
            log.info(f"Recorded interval {interval.id} for task {task.id}")
            return interval

    def _start(self, task_id: int, now: datetime) -> WorkedInterval:
        self.db.require_task(task_id)
        if self.db.open_interval_for(task_id) is not None:
            raise AlreadyRunning(task_id)
        if self.db.overlapping_intervals(task_id, now):
            raise ValidationError(
                f"Task {task_id} has recorded time after {now.isoformat()}; cannot start"
            )
        interval = self.db.insert_interval(task_id, now)
        log.info(f"Started task {task_id} at {now.isoformat()}")
        return interval

    def _stop(self, task_id: int, now: datetime) -> WorkedInterval:
        self.db.require_task(task_id)
        interval = self.db.open_interval_for(task_id)
        if interval is None:
            raise NotRunning(task_id)
        interval = self.db.close_interval(interval.id, now)
        log.info(f"Stopped task {task_id} after {interval.elapsed(now)}")
        return interval
