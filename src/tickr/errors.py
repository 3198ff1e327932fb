"""Errors raised by the tickr core."""

from typing import Optional


class TickrError(Exception):
    """Base class for every error the core reports."""


class StoreUnavailable(TickrError):
    """The database file cannot be created or opened."""


class MigrationError(TickrError):
    """A schema migration failed and was rolled back."""

    def __init__(self, version: int, message: str):
        super().__init__(f"Migration {version} failed: {message}")
        self.version = version


class AlreadyExists(TickrError):
    """A project or category with that name already exists."""


class NotFound(TickrError):
    """A referenced project, category or task does not exist."""


class ValidationError(TickrError):
    """Input was rejected before anything was written."""


class InvalidColor(ValidationError):
    """A color is not a 6-digit hex value."""


class AlreadyRunning(TickrError):
    """The task already has an open interval."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} is already running")
        self.task_id = task_id


class NotRunning(TickrError):
    """The task has no open interval."""

    def __init__(self, task_id: Optional[int] = None):
        if task_id is None:
            super().__init__("No task is running")
        else:
            super().__init__(f"Task {task_id} is not running")
        self.task_id = task_id
