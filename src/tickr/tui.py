"""
tickr TUI - task list with timers

Run with: tickr             (no command)
"""

import logging

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Static

from .db import KEEP, TickrDB
from .edit import EditCoordinator, NewCategory
from .errors import TickrError
from .query import SummaryScope, WorkedQuery, format_duration
from .timer import TimerEngine

log = logging.getLogger("tickr.tui")


class FormModal(ModalScreen):
    """Small form dialog; dismisses with {field_id: value} or None."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, title: str, fields: list[tuple[str, str, str]], **kwargs):
        super().__init__(**kwargs)
        self.title_text = title
        self.fields = fields  # (id, label, initial value)

    def compose(self) -> ComposeResult:
        rows = [
            Horizontal(
                Static(f"{label}: ", classes="label"),
                Input(value, id=field_id),
                classes="form-row"
            )
            for field_id, label, value in self.fields
        ]
        yield Container(
            Static(f"[bold]{self.title_text}[/bold]\n"),
            *rows,
            Horizontal(
                Button("Save", variant="primary", id="save"),
                Button("Cancel", id="cancel"),
                classes="button-row"
            ),
            id="form-modal"
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "save":
            self.dismiss({
                field_id: self.query_one(f"#{field_id}", Input).value
                for field_id, _, _ in self.fields
            })
        else:
            self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class TickrApp(App):
    """Task table with start/stop and edit popups."""

    CSS = """
    #running {
        height: 1;
        padding: 0 1;
        background: $boost;
    }

    #form-modal {
        width: 60;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }

    FormModal {
        align: center middle;
    }

    .form-row {
        height: 3;
    }

    .label {
        width: 16;
        padding: 1 0;
    }

    .button-row {
        height: 3;
        align: right middle;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("space", "toggle_task", "Start/Stop"),
        Binding("x", "stop_running", "Stop running"),
        Binding("e", "edit_task", "Edit"),
        Binding("c", "new_category", "Category"),
        Binding("p", "new_project", "Project"),
        Binding("r", "refresh", "Refresh", show=False),
        Binding("?", "help", "Help"),
    ]

    TITLE = "tickr"

    def __init__(self, db: TickrDB, **kwargs):
        super().__init__(**kwargs)
        self.db = db
        self.timer = TimerEngine(db)
        self.editor = EditCoordinator(db)
        self.worked = WorkedQuery(db)
        self._task_ids: list[int] = []

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="running")
        yield DataTable(id="tasks", cursor_type="row")
        yield Footer()

    def on_mount(self) -> None:
        self.sub_title = self.db.db_path
        table = self.query_one("#tasks", DataTable)
        table.add_columns("ID", "Project", "Task", "Category", "State", "Worked")
        self.refresh_tasks()
        self.set_interval(1.0, self.refresh_tasks)

    def refresh_tasks(self) -> None:
        """Reload tasks and recompute worked time."""
        table = self.query_one("#tasks", DataTable)
        cursor = table.cursor_row

        projects = {p.id: p.name for p in self.db.list_projects()}
        categories = {c.id: c for c in self.db.list_categories()}
        worked = dict(self.worked.worked_summary(SummaryScope.TASK))
        running_ids = {r.task_id for r in self.timer.running_tasks()}
        current = self.timer.currently_running()
        tasks = self.db.list_tasks()

        table.clear()
        self._task_ids = []
        for task in tasks:
            category = categories.get(task.category_id)
            emphasis = "bold green" if current and current.task_id == task.id else ""
            table.add_row(
                str(task.id),
                projects[task.project_id],
                Text(task.label, style=emphasis),
                Text(category.name, style=category.hex) if category else "-",
                Text("running", style="green") if task.id in running_ids else "",
                format_duration(worked[task.id]) if task.id in worked else "-",
            )
            self._task_ids.append(task.id)
        if self._task_ids:
            table.move_cursor(row=min(cursor, len(self._task_ids) - 1))

        banner = self.query_one("#running", Static)
        if current is None:
            banner.update("No task running")
        else:
            task = self.db.require_task(current.task_id)
            elapsed = self.db.now() - current.started_at
            banner.update(f"Running: {projects[task.project_id]}/{task.label} "
                          f"({format_duration(elapsed)})")

    def _selected_task_id(self):
        table = self.query_one("#tasks", DataTable)
        if not self._task_ids:
            self.notify("No task selected")
            return None
        return self._task_ids[table.cursor_row]

    def _run(self, action, success: str = None) -> None:
        """Run a core operation, reporting failures in a toast."""
        try:
            action()
        except TickrError as e:
            log.debug(f"Action failed: {e}")
            self.notify(str(e), severity="error")
            return
        if success:
            self.notify(success)
        self.refresh_tasks()

    def action_toggle_task(self) -> None:
        task_id = self._selected_task_id()
        if task_id is not None:
            self._run(lambda: self.timer.toggle(task_id))

    def action_stop_running(self) -> None:
        self._run(self.timer.stop_running, "Task stopped.")

    def action_edit_task(self) -> None:
        task_id = self._selected_task_id()
        if task_id is None:
            return
        task = self.db.require_task(task_id)
        category = self.db.get_category(task.category_id) if task.category_id else None

        def apply(result) -> None:
            if result is None:
                return
            name = result["category"].strip()
            if not name:
                selector = None
            elif category is not None and name == category.name:
                selector = KEEP
            else:
                selector = NewCategory(name, result["color"].strip() or None)
            self._run(lambda: self.editor.edit_task(task_id, result["label"], selector),
                      "Task updated.")

        self.push_screen(FormModal(f"Edit task {task_id}", [
            ("label", "Label", task.label),
            ("category", "Category", category.name if category else ""),
            ("color", "New color", ""),
        ]), apply)

    def action_new_category(self) -> None:
        def apply(result) -> None:
            if result is not None:
                self._run(lambda: self.db.add_category(result["name"], result["color"].strip() or None),
                          "Category created.")

        self.push_screen(FormModal("New category", [
            ("name", "Name", ""),
            ("color", "Color", ""),
        ]), apply)

    def action_new_project(self) -> None:
        def apply(result) -> None:
            if result is not None:
                self._run(lambda: self.db.add_project(result["name"]), "Project created.")

        self.push_screen(FormModal("New project", [("name", "Name", "")]), apply)

    def action_refresh(self) -> None:
        self.refresh_tasks()

    def action_help(self) -> None:
        self.notify(
            "↑↓: Select task | Space: Start/stop | x: Stop running task\n"
            "e: Edit label/category | c: New category | p: New project\n"
            "Tasks are added from the command line: tickr task add PROJECT LABEL",
            title="Help",
            timeout=6
        )
