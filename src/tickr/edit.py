"""
Task edits coming from the CLI and the edit popup.

An edit changes the label and/or category of a task, optionally creating
the category on the way. Intervals are never touched, so a running task
keeps running through an edit.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .db import KEEP, Keep, TickrDB
from .errors import NotFound, ValidationError
from .models import Task

log = logging.getLogger("tickr.edit")


@dataclass(frozen=True)
class ExistingCategory:
    category_id: int


@dataclass(frozen=True)
class NewCategory:
    """Link a category by name, creating it with this color if it is missing."""
    name: str
    color: Optional[str] = None


CategorySelector = Union[ExistingCategory, NewCategory, None, Keep]


class EditCoordinator:

    def __init__(self, db: TickrDB):
        self.db = db

    def edit_task(self, task_id: int, label: Optional[str] = None,
                  category: CategorySelector = KEEP) -> Task:
        """Apply a label and/or category change in one transaction.

        label=None leaves the label alone. category is KEEP (unchanged),
        None (clear), ExistingCategory or NewCategory.
        """
        if label is not None:
            label = label.strip()
            if not label:
                raise ValidationError("Task label must not be empty")

        with self.db.transaction():
            self.db.require_task(task_id)
            category_id = self._resolve_selector(category)
            task = self.db.update_task(
                task_id,
                label=label if label is not None else KEEP,
                category_id=category_id,
            )

        log.info(f"Edited task {task_id}: label={task.label!r} category_id={task.category_id}")
        return task

    def _resolve_selector(self, category: CategorySelector):
        if category is KEEP or category is None:
            return category
        if isinstance(category, ExistingCategory):
            if self.db.get_category(category.category_id) is None:
                raise NotFound(f"Category {category.category_id} not found")
            return category.category_id
        if isinstance(category, NewCategory):
            existing = self.db.find_category(category.name)
            if existing is not None:
                return existing.id
            created = self.db.add_category(category.name, category.color)
            log.info(f"Created category '{created.name}' while editing")
            return created.id
        raise ValidationError(f"Unsupported category selector: {category!r}")
