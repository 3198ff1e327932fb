"""
Read-side views over worked time.

Nothing here is cached: running intervals are measured against the clock
each time a view is computed. Rows are reported as stored, so overlapping
intervals (which the timer never writes) show up unmodified.
"""

import csv
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Union

from .db import ProjectRef, TickrDB
from .errors import ValidationError
from .models import Project, WorkedInterval

log = logging.getLogger("tickr.query")

CSV_HEADER = ["Project", "Task", "Category", "Start Time", "End Time", "Duration (seconds)"]


class SummaryScope(str, Enum):
    ALL = "all"
    PROJECT = "project"
    TASK = "task"
    DAY = "day"


class WorkedRange(str, Enum):
    TODAY = "today"
    WEEK = "week"


def format_duration(delta: timedelta) -> str:
    """Format a duration for display (e.g. '45s', '12m', '2h05m')."""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m"
    hours = seconds // 3600
    mins = (seconds % 3600) // 60
    return f"{hours}h{mins:02d}m"


class WorkedQuery:
    """Aggregations and listings for the CLI and TUI."""

    def __init__(self, db: TickrDB):
        self.db = db

    def worked_summary(self, scope: Union[SummaryScope, str] = SummaryScope.ALL,
                       project: ProjectRef = None, task_id: int = None,
                       day: date = None) -> list[tuple]:
        """Total worked time grouped by scope, as (key, timedelta) pairs.

        Keys are "all", the project name, the task id or the start date of
        the interval. project, task_id and day narrow the intervals counted.
        """
        try:
            scope = SummaryScope(scope)
        except ValueError:
            raise ValidationError(f"Unknown summary scope: {scope!r}")

        now = self.db.now()
        projects = {p.id: p for p in self.db.list_projects()}
        tasks = {t.id: t for t in self.db.list_tasks()}
        project_id = self.db.resolve_project(project).id if project is not None else None
        if task_id is not None:
            self.db.require_task(task_id)

        totals: dict = {}
        # Explicit filters always produce a row, even with nothing worked
        if scope == SummaryScope.ALL:
            totals["all"] = timedelta(0)
        elif scope == SummaryScope.PROJECT and project_id is not None:
            totals[projects[project_id].name] = timedelta(0)
        elif scope == SummaryScope.TASK and task_id is not None:
            totals[task_id] = timedelta(0)
        elif scope == SummaryScope.DAY and day is not None:
            totals[day] = timedelta(0)

        for interval in self.db.list_intervals():
            task = tasks[interval.task_id]
            if project_id is not None and task.project_id != project_id:
                continue
            if task_id is not None and interval.task_id != task_id:
                continue
            if day is not None and interval.start.date() != day:
                continue

            if scope == SummaryScope.ALL:
                key = "all"
            elif scope == SummaryScope.PROJECT:
                key = projects[task.project_id].name
            elif scope == SummaryScope.TASK:
                key = task.id
            else:
                key = interval.start.date()
            totals[key] = totals.get(key, timedelta(0)) + interval.elapsed(now)

        return sorted(totals.items())

    def list_intervals(self, task_id: int) -> list[WorkedInterval]:
        """Intervals of a task ordered by start."""
        self.db.require_task(task_id)
        return self.db.list_intervals(task_id)

    def projects_worked_on(self, worked_range: Union[WorkedRange, str] = WorkedRange.TODAY) -> list[Project]:
        """Projects with an interval starting today, or within the last 7 days."""
        try:
            worked_range = WorkedRange(worked_range)
        except ValueError:
            raise ValidationError(f"Unknown range: {worked_range!r}")

        today = self.db.now().date()
        since = today if worked_range == WorkedRange.TODAY else today - timedelta(days=6)

        tasks = {t.id: t for t in self.db.list_tasks()}
        project_ids = {
            tasks[i.task_id].project_id
            for i in self.db.list_intervals()
            if since <= i.start.date() <= today
        }
        return [p for p in self.db.list_projects() if p.id in project_ids]

    def export_csv(self, path: Union[str, Path], start: datetime = None,
                   end: datetime = None) -> int:
        """Write intervals starting within [start, end] to a CSV file.

        Returns the number of intervals written.
        """
        now = self.db.now()
        projects = {p.id: p for p in self.db.list_projects()}
        categories = {c.id: c for c in self.db.list_categories()}
        tasks = {t.id: t for t in self.db.list_tasks()}

        count = 0
        with open(path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for interval in self.db.intervals_between(start, end):
                task = tasks[interval.task_id]
                category = categories.get(task.category_id)
                writer.writerow([
                    projects[task.project_id].name,
                    task.label,
                    category.name if category else "",
                    interval.start.isoformat(),
                    interval.end.isoformat() if interval.end else "Running",
                    int(interval.elapsed(now).total_seconds()),
                ])
                count += 1

        log.info(f"Exported {count} intervals to {path}")
        return count
