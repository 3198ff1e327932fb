"""
Row types for the tickr store.

Timestamps are stored as ISO-8601 strings carrying a UTC offset and are
handled as timezone-aware datetimes everywhere else.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


def local_now() -> datetime:
    """Current local time with offset, truncated to whole seconds."""
    return datetime.now().astimezone().replace(microsecond=0)


def to_aware(value: datetime) -> datetime:
    """Attach the local offset to naive datetimes."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def format_timestamp(value: datetime) -> str:
    return to_aware(value).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return to_aware(datetime.fromisoformat(value))


@dataclass
class Project:
    id: int
    name: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Project":
        return cls(id=row['id'], name=row['name'],
                   created_at=parse_timestamp(row['created_at']))


@dataclass
class Category:
    id: int
    name: str
    color: str  # RRGGBB, no leading '#'

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Category":
        return cls(id=row['id'], name=row['name'], color=row['color'])

    @property
    def hex(self) -> str:
        """Color with a leading '#', for display."""
        return f"#{self.color}"


@dataclass
class Task:
    """A tracked task ("tickr") belonging to a project."""
    id: int
    project_id: int
    label: str
    category_id: Optional[int]
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Task":
        return cls(id=row['id'], project_id=row['project_id'], label=row['label'],
                   category_id=row['category_id'],
                   created_at=parse_timestamp(row['created_at']))


@dataclass
class WorkedInterval:
    """One contiguous span of tracked time. end is None while running."""
    id: int
    task_id: int
    start: datetime
    end: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "WorkedInterval":
        return cls(id=row['id'], task_id=row['task_id'],
                   start=parse_timestamp(row['start_time']),
                   end=parse_timestamp(row['end_time']))

    @property
    def is_running(self) -> bool:
        return self.end is None

    def elapsed(self, now: datetime) -> timedelta:
        """Duration of the interval; open intervals are measured up to now."""
        end = self.end if self.end is not None else to_aware(now)
        return max(end - self.start, timedelta(0))


@dataclass
class RunningTask:
    task_id: int
    interval_id: int
    started_at: datetime
