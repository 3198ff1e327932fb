"""
SQLite store for tickr.

Owns the schema (versioned, forward-only migrations) and every read and
write against it. The timer engine and edit coordinator go through TickrDB.
"""

import logging
import os
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from .color import PALETTE, normalize_color, random_color
from .errors import (
    AlreadyExists,
    AlreadyRunning,
    InvalidColor,
    MigrationError,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from .models import (
    Category,
    Project,
    Task,
    WorkedInterval,
    format_timestamp,
    local_now,
    parse_timestamp,
    to_aware,
)

log = logging.getLogger("tickr.db")

ProjectRef = Union[Project, int, str]
CategoryRef = Union[Category, int, str]


class Keep:
    """Marker for "leave this field as it is"."""

    def __repr__(self):
        return "KEEP"


KEEP = Keep()


# --- Migrations ---

@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def _migrate_initial_schema(conn: sqlite3.Connection):
    # Layout written by tickr releases before schema versioning; such files are adopted as-is
    conn.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT    NOT NULL UNIQUE,
            created_at  TEXT    NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT    NOT NULL UNIQUE,
            color       TEXT    NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS entries (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id  INTEGER NOT NULL,
            description TEXT,
            category_id INTEGER,
            FOREIGN KEY (project_id) REFERENCES projects(id),
            FOREIGN KEY (category_id) REFERENCES categories(id)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS intervals (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            entry_id   INTEGER NOT NULL,
            start_time TEXT    NOT NULL,
            end_time   TEXT,
            FOREIGN KEY (entry_id) REFERENCES entries(id) ON DELETE CASCADE
        )
    """)
    # Very old databases predate entries.category_id
    if 'category_id' not in _table_columns(conn, 'entries'):
        conn.execute("ALTER TABLE entries ADD COLUMN category_id INTEGER")

    columns = _table_columns(conn, 'entries')
    if 'start_time' in columns or 'end_time' in columns:
        _move_entry_times_to_intervals(conn, columns)


def _move_entry_times_to_intervals(conn: sqlite3.Connection, columns: set[str]):
    """Rebuild entries that carry their own start/end times.

    Those times become intervals unless an interval with the same start
    already exists for the entry.
    """
    if 'start_time' in columns:
        end_expr = "e.end_time" if 'end_time' in columns else "NULL"
        cursor = conn.execute(f"""
            INSERT INTO intervals (entry_id, start_time, end_time)
            SELECT e.id, e.start_time, {end_expr} FROM entries e
            WHERE e.start_time IS NOT NULL
              AND NOT EXISTS (
                  SELECT 1 FROM intervals i
                  WHERE i.entry_id = e.id AND i.start_time = e.start_time
              )
        """)
        log.info(f"Moved {cursor.rowcount} entry time range(s) into intervals")

    conn.execute("""
        CREATE TABLE entries_rebuilt (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id  INTEGER NOT NULL,
            description TEXT,
            category_id INTEGER,
            FOREIGN KEY (project_id) REFERENCES projects(id),
            FOREIGN KEY (category_id) REFERENCES categories(id)
        )
    """)
    conn.execute("""
        INSERT INTO entries_rebuilt (id, project_id, description, category_id)
        SELECT id, project_id, description, category_id FROM entries
    """)
    conn.execute("DROP TABLE entries")
    conn.execute("ALTER TABLE entries_rebuilt RENAME TO entries")


def _migrate_entries_to_tasks(conn: sqlite3.Connection):
    conn.execute("ALTER TABLE entries RENAME TO tasks")
    conn.execute("ALTER TABLE tasks RENAME COLUMN description TO label")
    conn.execute("ALTER TABLE intervals RENAME COLUMN entry_id TO task_id")
    conn.execute("ALTER TABLE tasks ADD COLUMN created_at TEXT")

    # Backfill: first worked interval, else the owning project's creation time
    conn.execute("""
        UPDATE tasks SET created_at = COALESCE(
            (SELECT MIN(start_time) FROM intervals WHERE intervals.task_id = tasks.id),
            (SELECT created_at FROM projects WHERE projects.id = tasks.project_id)
        )
    """)
    conn.execute("""
        UPDATE tasks SET label = '(untitled)'
        WHERE label IS NULL OR trim(label) = ''
    """)


def _migrate_normalize_colors(conn: sqlite3.Connection):
    rows = conn.execute("SELECT id, color FROM categories").fetchall()
    for row in rows:
        try:
            color = normalize_color(row['color'])
        except InvalidColor:
            log.warning(f"Category {row['id']} had unusable color {row['color']!r}, "
                        f"replacing with {PALETTE[0]}")
            color = PALETTE[0]
        if color != row['color']:
            conn.execute("UPDATE categories SET color = ? WHERE id = ?", (color, row['id']))


_FRACTION_RE = re.compile(r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})\.\d+')


def _whole_seconds(value: Optional[str]) -> Optional[str]:
    """Drop fractional seconds and spell a 'Z' suffix as +00:00."""
    if value is None:
        return None
    value = _FRACTION_RE.sub(r'\1', value.strip())
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return value


def _close_extra_open_intervals(conn: sqlite3.Connection):
    """Leave only the latest open interval of each task running.

    Older open intervals end where the next interval of the task starts.
    """
    rows = conn.execute("""
        SELECT task_id FROM intervals WHERE end_time IS NULL
        GROUP BY task_id HAVING COUNT(*) > 1
    """).fetchall()
    for row in rows:
        task_id = row['task_id']
        intervals = conn.execute(
            "SELECT id, start_time, end_time FROM intervals WHERE task_id = ?", (task_id,)
        ).fetchall()
        intervals = sorted(intervals, key=lambda r: (parse_timestamp(_whole_seconds(r['start_time'])),
                                                     r['id']))
        open_positions = [pos for pos, r in enumerate(intervals) if r['end_time'] is None]
        for pos in open_positions[:-1]:
            stale, following = intervals[pos], intervals[pos + 1]
            log.warning(f"Task {task_id} had interval {stale['id']} left open, "
                        f"closing it at {following['start_time']}")
            conn.execute("UPDATE intervals SET end_time = ? WHERE id = ?",
                         (following['start_time'], stale['id']))


def _migrate_interval_indexes(conn: sqlite3.Connection):
    _close_extra_open_intervals(conn)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_intervals_task_start
            ON intervals(task_id, start_time)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_tasks_project
            ON tasks(project_id)
    """)
    # At most one open interval per task
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_intervals_one_open
            ON intervals(task_id) WHERE end_time IS NULL
    """)


def _migrate_whole_second_timestamps(conn: sqlite3.Connection):
    columns = {
        'projects': ['created_at'],
        'tasks': ['created_at'],
        'intervals': ['start_time', 'end_time'],
    }
    for table, names in columns.items():
        rows = conn.execute(f"SELECT id, {', '.join(names)} FROM {table}").fetchall()
        for row in rows:
            cleaned = [_whole_seconds(row[name]) for name in names]
            if cleaned != [row[name] for name in names]:
                assignments = ", ".join(f"{name} = ?" for name in names)
                conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?",
                             (*cleaned, row['id']))


MIGRATIONS = [
    Migration(1, "initial schema", _migrate_initial_schema),
    Migration(2, "rename entries to tasks, add tasks.created_at", _migrate_entries_to_tasks),
    Migration(3, "normalize category colors", _migrate_normalize_colors),
    Migration(4, "interval indexes and single open interval per task", _migrate_interval_indexes),
    Migration(5, "store timestamps in whole seconds", _migrate_whole_second_timestamps),
]

LATEST_VERSION = MIGRATIONS[-1].version


def schema_version(conn: sqlite3.Connection) -> int:
    """Return the stored schema version, 0 for a fresh database."""
    row = conn.execute("""
        SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'
    """).fetchone()
    if row is None:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def _set_schema_version(conn: sqlite3.Connection, version: int):
    conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
    conn.execute("DELETE FROM schema_version")
    conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))


def migrate(conn: sqlite3.Connection, migrations: list[Migration] = None) -> list[int]:
    """Apply pending migrations in order, one transaction each.

    Returns the versions that were applied (empty when already current).
    A failing migration is rolled back and reported as MigrationError; the
    stored version stays at the last migration that succeeded.
    """
    if migrations is None:
        migrations = MIGRATIONS

    current = schema_version(conn)
    latest = migrations[-1].version if migrations else 0
    if current > latest:
        raise MigrationError(current, f"database schema is newer than supported version {latest}")

    applied = []
    foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    # Table rebuilds drop tables other tables point at; no cascades while migrating
    conn.execute("PRAGMA foreign_keys = OFF")
    try:
        for migration in migrations:
            if migration.version <= current:
                continue
            if migration.version != current + 1:
                raise MigrationError(migration.version,
                                     f"expected migration {current + 1}, found {migration.version}")

            log.info(f"Applying migration {migration.version}: {migration.description}")
            try:
                conn.execute("BEGIN IMMEDIATE")
                migration.apply(conn)
                _set_schema_version(conn, migration.version)
                conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                log.error(f"Migration {migration.version} rolled back: {e}")
                raise MigrationError(migration.version, str(e)) from e

            current = migration.version
            applied.append(migration.version)
    finally:
        if foreign_keys:
            conn.execute("PRAGMA foreign_keys = ON")

    return applied


def connect(db_path: str) -> sqlite3.Connection:
    """Open the database file, creating its directory if needed."""
    db_path = str(db_path)
    if db_path != ":memory:":
        path = Path(db_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create directory {path.parent}: {e}") from e
        if path.exists() and not os.access(path, os.R_OK | os.W_OK):
            raise StoreUnavailable(f"Database {db_path} is not readable and writable")

    try:
        conn = sqlite3.connect(db_path, isolation_level=None)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot open database {db_path}: {e}") from e

    try:
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
    except sqlite3.Error as e:
        conn.close()
        raise StoreUnavailable(f"Cannot open database {db_path}: {e}") from e
    return conn


def open_and_migrate(db_path: str) -> sqlite3.Connection:
    """Open the store and bring its schema to LATEST_VERSION."""
    conn = connect(db_path)
    try:
        migrate(conn)
    except MigrationError:
        conn.close()
        raise
    return conn


def _clean(value: Optional[str], what: str) -> str:
    """Trim a name or label, rejecting blanks."""
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{what} must not be empty")
    return cleaned


class TickrDB:
    """Entity store: projects, categories, tasks and worked intervals."""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = None):
        self.db_path = str(db_path)
        self.clock = clock or local_now
        self.conn = open_and_migrate(self.db_path)
        self._depth = 0

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def now(self) -> datetime:
        return to_aware(self.clock())

    @contextmanager
    def transaction(self):
        """Run a block atomically.

        Nested uses join the outermost transaction, which commits on success
        and rolls back everything on any exception.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self.conn
            finally:
                self._depth -= 1
            return

        self.conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self.conn
            self.conn.execute("COMMIT")
        except BaseException:
            # SQLite may already have rolled back (e.g. SQLITE_FULL)
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        finally:
            self._depth = 0

    # --- Projects ---

    def add_project(self, name: str) -> Project:
        """Create a project. Names are unique."""
        name = _clean(name, "Project name")
        created_at = format_timestamp(self.now())
        with self.transaction() as conn:
            if self.find_project(name) is not None:
                raise AlreadyExists(f"Project '{name}' already exists")
            try:
                cursor = conn.execute("""
                    INSERT INTO projects (name, created_at) VALUES (?, ?)
                """, (name, created_at))
            except sqlite3.IntegrityError as e:
                raise AlreadyExists(f"Project '{name}' already exists") from e
            log.debug(f"Added project {cursor.lastrowid}: {name}")
            return Project(id=cursor.lastrowid, name=name,
                           created_at=parse_timestamp(created_at))

    def find_project(self, name: str) -> Optional[Project]:
        row = self.conn.execute(
            "SELECT * FROM projects WHERE name = ?", ((name or "").strip(),)
        ).fetchone()
        return Project.from_row(row) if row else None

    def get_project(self, project_id: int) -> Optional[Project]:
        row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return Project.from_row(row) if row else None

    def list_projects(self) -> list[Project]:
        rows = self.conn.execute("SELECT * FROM projects ORDER BY name").fetchall()
        return [Project.from_row(row) for row in rows]

    def resolve_project(self, project: ProjectRef) -> Project:
        """Look up a project by object, id or name; NotFound if absent."""
        if isinstance(project, Project):
            project = project.id
        found = self.get_project(project) if isinstance(project, int) else self.find_project(project)
        if found is None:
            raise NotFound(f"Project '{project}' not found")
        return found

    # --- Categories ---

    def add_category(self, name: str, color: str = None) -> Category:
        """Create a category; without a color one is picked from the palette."""
        name = _clean(name, "Category name")
        color = normalize_color(color) if color is not None else random_color()
        with self.transaction() as conn:
            if self.find_category(name) is not None:
                raise AlreadyExists(f"Category '{name}' already exists")
            try:
                cursor = conn.execute("""
                    INSERT INTO categories (name, color) VALUES (?, ?)
                """, (name, color))
            except sqlite3.IntegrityError as e:
                raise AlreadyExists(f"Category '{name}' already exists") from e
            log.debug(f"Added category {cursor.lastrowid}: {name} ({color})")
            return Category(id=cursor.lastrowid, name=name, color=color)

    def find_category(self, name: str) -> Optional[Category]:
        row = self.conn.execute(
            "SELECT * FROM categories WHERE name = ?", ((name or "").strip(),)
        ).fetchone()
        return Category.from_row(row) if row else None

    def get_category(self, category_id: int) -> Optional[Category]:
        row = self.conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        return Category.from_row(row) if row else None

    def list_categories(self) -> list[Category]:
        rows = self.conn.execute("SELECT * FROM categories ORDER BY name").fetchall()
        return [Category.from_row(row) for row in rows]

    def resolve_category(self, category: CategoryRef) -> Category:
        if isinstance(category, Category):
            category = category.id
        found = self.get_category(category) if isinstance(category, int) else self.find_category(category)
        if found is None:
            raise NotFound(f"Category '{category}' not found")
        return found

    # --- Tasks ---

    def add_task(self, project: ProjectRef, label: str,
                 category: CategoryRef = None) -> Task:
        """Create a task in a project, optionally tagged with an existing category."""
        label = _clean(label, "Task label")
        created_at = format_timestamp(self.now())
        with self.transaction() as conn:
            project = self.resolve_project(project)
            category_id = self.resolve_category(category).id if category is not None else None
            cursor = conn.execute("""
                INSERT INTO tasks (project_id, label, category_id, created_at)
                VALUES (?, ?, ?, ?)
            """, (project.id, label, category_id, created_at))
            log.debug(f"Added task {cursor.lastrowid}: {project.name}/{label}")
            return Task(id=cursor.lastrowid, project_id=project.id, label=label,
                        category_id=category_id, created_at=parse_timestamp(created_at))

    def get_task(self, task_id: int) -> Optional[Task]:
        row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row else None

    def require_task(self, task_id: int) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def find_task(self, project: ProjectRef, label: str) -> Optional[Task]:
        """First task in the project carrying this label."""
        project = self.resolve_project(project)
        row = self.conn.execute("""
            SELECT * FROM tasks WHERE project_id = ? AND label = ?
            ORDER BY id LIMIT 1
        """, (project.id, (label or "").strip())).fetchone()
        return Task.from_row(row) if row else None

    def list_tasks(self, project: ProjectRef = None) -> list[Task]:
        if project is None:
            rows = self.conn.execute("SELECT * FROM tasks ORDER BY id").fetchall()
        else:
            project = self.resolve_project(project)
            rows = self.conn.execute(
                "SELECT * FROM tasks WHERE project_id = ? ORDER BY id", (project.id,)
            ).fetchall()
        return [Task.from_row(row) for row in rows]

    def update_task(self, task_id: int, label=KEEP, category_id=KEEP) -> Task:
        """Update mutable task fields. category_id=None clears the category."""
        updates = {}
        if label is not KEEP:
            updates['label'] = _clean(label, "Task label")

        with self.transaction() as conn:
            self.require_task(task_id)
            if category_id is not KEEP:
                if category_id is not None and self.get_category(category_id) is None:
                    raise NotFound(f"Category {category_id} not found")
                updates['category_id'] = category_id

            if updates:
                set_clause = ', '.join(f"{k} = ?" for k in updates.keys())
                conn.execute(
                    f"UPDATE tasks SET {set_clause} WHERE id = ?",
                    (*updates.values(), task_id)
                )
            return self.require_task(task_id)

    # --- Worked intervals ---

    def get_interval(self, interval_id: int) -> Optional[WorkedInterval]:
        row = self.conn.execute("SELECT * FROM intervals WHERE id = ?", (interval_id,)).fetchone()
        return WorkedInterval.from_row(row) if row else None

    def open_interval_for(self, task_id: int) -> Optional[WorkedInterval]:
        """The task's running interval, if any."""
        row = self.conn.execute("""
            SELECT * FROM intervals WHERE task_id = ? AND end_time IS NULL
            ORDER BY id DESC LIMIT 1
        """, (task_id,)).fetchone()
        return WorkedInterval.from_row(row) if row else None

    def running_intervals(self) -> list[WorkedInterval]:
        """All open intervals, most recently started first."""
        rows = self.conn.execute("SELECT * FROM intervals WHERE end_time IS NULL").fetchall()
        intervals = [WorkedInterval.from_row(row) for row in rows]
        return sorted(intervals, key=lambda i: (i.start, i.id), reverse=True)

    def insert_interval(self, task_id: int, start: datetime,
                        end: datetime = None) -> WorkedInterval:
        """Insert an interval row as given. Overlap checks belong to the caller."""
        start = to_aware(start)
        end = to_aware(end) if end is not None else None
        if end is not None and end < start:
            raise ValidationError(f"Interval end {end.isoformat()} is before its start {start.isoformat()}")

        with self.transaction() as conn:
            self.require_task(task_id)
            try:
                cursor = conn.execute("""
                    INSERT INTO intervals (task_id, start_time, end_time) VALUES (?, ?, ?)
                """, (task_id, format_timestamp(start),
                      format_timestamp(end) if end is not None else None))
            except sqlite3.IntegrityError as e:
                if end is None:
                    raise AlreadyRunning(task_id) from e
                raise
            return WorkedInterval(id=cursor.lastrowid, task_id=task_id, start=start, end=end)

    def close_interval(self, interval_id: int, end: datetime) -> WorkedInterval:
        """Set the end of an open interval."""
        end = to_aware(end)
        with self.transaction() as conn:
            interval = self.get_interval(interval_id)
            if interval is None:
                raise NotFound(f"Interval {interval_id} not found")
            if interval.end is not None:
                raise ValidationError(f"Interval {interval_id} is already closed")
            if end < interval.start:
                raise ValidationError(f"Interval end {end.isoformat()} is before its start "
                                      f"{interval.start.isoformat()}")
            conn.execute("""
                UPDATE intervals SET end_time = ? WHERE id = ? AND end_time IS NULL
            """, (format_timestamp(end), interval_id))
            interval.end = end
            return interval

    def list_intervals(self, task_id: int = None) -> list[WorkedInterval]:
        """Intervals ordered by start, for one task or for all of them."""
        if task_id is None:
            rows = self.conn.execute("SELECT * FROM intervals").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM intervals WHERE task_id = ?", (task_id,)
            ).fetchall()
        intervals = [WorkedInterval.from_row(row) for row in rows]
        return sorted(intervals, key=lambda i: (i.start, i.id))

    def intervals_between(self, start: datetime = None,
                          end: datetime = None) -> list[WorkedInterval]:
        """Intervals whose start lies in [start, end]; either bound may be open."""
        start = to_aware(start) if start is not None else None
        end = to_aware(end) if end is not None else None
        return [
            i for i in self.list_intervals()
            if (start is None or i.start >= start) and (end is None or i.start <= end)
        ]

    def overlapping_intervals(self, task_id: int, start: datetime,
                              end: datetime = None) -> list[WorkedInterval]:
        """Intervals of the task sharing time with [start, end).

        A missing end on either side extends to infinity. Touching boundaries
        do not count as overlap.
        """
        start = to_aware(start)
        end = to_aware(end) if end is not None else None
        found = []
        for interval in self.list_intervals(task_id):
            starts_before_new_end = end is None or interval.start < end
            ends_after_new_start = interval.end is None or interval.end > start
            if starts_before_new_end and ends_after_new_start:
                found.append(interval)
        return found

    def last_interval_end(self, task_id: int) -> Optional[datetime]:
        ends = [i.end for i in self.list_intervals(task_id) if i.end is not None]
        return max(ends) if ends else None
