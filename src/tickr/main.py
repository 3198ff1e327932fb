#!/usr/bin/env python3
"""
tickr - terminal time tracker

Run without a command to open the interactive UI.
"""

import argparse
import logging
import sys
from datetime import datetime

import yaml

from . import __version__
from .config import load_config, resolve_db_path
from .db import KEEP, TickrDB
from .edit import EditCoordinator, NewCategory
from .errors import MigrationError, NotFound, StoreUnavailable, TickrError
from .models import to_aware
from .query import SummaryScope, WorkedQuery, format_duration
from .timer import TimerEngine

log = logging.getLogger("tickr")


def setup_logging(level: str = "WARNING", verbose: bool = False):
    logging.basicConfig(
        level=logging.INFO if verbose else getattr(logging, str(level).upper(), logging.WARNING),
        format='%(asctime)s [%(levelname)s] %(message)s'
    )


def parse_datetime(value: str) -> datetime:
    """argparse type for ISO-8601 timestamps; naive values are local time."""
    try:
        return to_aware(datetime.fromisoformat(value))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid timestamp {value!r} (expected e.g. 2024-01-31T09:00 or 2024-01-31T09:00:00+01:00)"
        )


def open_db(args) -> TickrDB:
    """Open the store or exit with an error."""
    try:
        return TickrDB(args.db)
    except (StoreUnavailable, MigrationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def find_task(db: TickrDB, project: str, label: str):
    task = db.find_task(project, label)
    if task is None:
        raise NotFound(f"Task '{label}' not found in project '{project}'")
    return task


def cmd_project(args, db: TickrDB):
    """Add or list projects."""
    if args.action == "add":
        project = db.add_project(args.name)
        print(f"Added project {project.id}: {project.name}")

    elif args.action == "list":
        projects = db.list_projects()
        if not projects:
            print("No projects yet.")
            return
        summary = dict(WorkedQuery(db).worked_summary(SummaryScope.PROJECT))
        print(f"{'ID':<4} {'Name':<30} {'Worked':<10} {'Created':<20}")
        print("-" * 66)
        for p in projects:
            worked = format_duration(summary[p.name]) if p.name in summary else "-"
            print(f"{p.id:<4} {p.name[:29]:<30} {worked:<10} {p.created_at.strftime('%Y-%m-%d %H:%M'):<20}")

    elif args.action == "worked":
        worked_range = "week" if args.week else "today"
        projects = WorkedQuery(db).projects_worked_on(worked_range)
        if not projects:
            print(f"Nothing worked on {'this week' if args.week else 'today'}.")
            return
        for p in projects:
            print(p.name)


def cmd_category(args, db: TickrDB):
    """Add or list categories."""
    if args.action == "add":
        category = db.add_category(args.name, args.color)
        print(f"Added category {category.id}: {category.name} ({category.hex})")

    elif args.action == "list":
        categories = db.list_categories()
        if not categories:
            print("No categories yet.")
            return
        print(f"{'ID':<4} {'Name':<25} {'Color':<8}")
        print("-" * 40)
        for c in categories:
            print(f"{c.id:<4} {c.name[:24]:<25} {c.hex:<8}")


def cmd_task(args, db: TickrDB):
    """Manage tasks and their timers."""
    timer = TimerEngine(db)

    if args.action == "add":
        if args.end and not args.start:
            print("Error: --end requires --start", file=sys.stderr)
            sys.exit(1)
        if args.start:
            interval = timer.add_worked_interval(args.project, args.label, args.start,
                                                 args.end, args.category)
            state = "running" if interval.is_running else format_duration(interval.elapsed(db.now()))
            print(f"Recorded interval {interval.id} for task {interval.task_id} ({state})")
        else:
            task = db.add_task(args.project, args.label, args.category)
            print(f"Added task {task.id}: {args.project}/{task.label}")

    elif args.action == "list":
        tasks = db.list_tasks(args.project)
        if not tasks:
            print("No tasks yet.")
            return
        projects = {p.id: p.name for p in db.list_projects()}
        categories = {c.id: c.name for c in db.list_categories()}
        worked = dict(WorkedQuery(db).worked_summary(SummaryScope.TASK))
        running = {r.task_id for r in timer.running_tasks()}
        print(f"{'ID':<4} {'Project':<18} {'Label':<28} {'Category':<14} {'Worked':<8} {'State':<8}")
        print("-" * 85)
        for t in tasks:
            category = categories.get(t.category_id, '-')
            total = format_duration(worked[t.id]) if t.id in worked else "-"
            state = "running" if t.id in running else ""
            print(f"{t.id:<4} {projects[t.project_id][:17]:<18} {t.label[:27]:<28} "
                  f"{category[:13]:<14} {total:<8} {state:<8}")

    elif args.action == "edit":
        if args.clear_category:
            category = None
        elif args.category:
            category = NewCategory(args.category, args.color)
        else:
            category = KEEP
        task = EditCoordinator(db).edit_task(args.id, args.label, category)
        print(f"Updated task {task.id}: {task.label}")

    elif args.action in ("start", "stop", "toggle", "switch"):
        task = find_task(db, args.project, args.label)
        interval = getattr(timer, args.action)(task.id)
        if interval.is_running:
            print(f"Started '{task.label}' at {interval.start.strftime('%H:%M:%S')}")
        else:
            print(f"Stopped '{task.label}' after {format_duration(interval.elapsed(db.now()))}")


def cmd_stop(args, db: TickrDB):
    """Stop the running task."""
    interval = TimerEngine(db).stop_running()
    task = db.require_task(interval.task_id)
    print(f"Stopped '{task.label}' after {format_duration(interval.elapsed(db.now()))}")


def cmd_status(args, db: TickrDB):
    """Show running tasks."""
    running = TimerEngine(db).running_tasks()
    if not running:
        print("No task running.")
        return
    now = db.now()
    for r in running:
        task = db.require_task(r.task_id)
        project = db.get_project(task.project_id)
        print(f"{project.name}/{task.label}: running since "
              f"{r.started_at.strftime('%H:%M:%S')} ({format_duration(now - r.started_at)})")


def cmd_intervals(args, db: TickrDB):
    """List the intervals of a task."""
    intervals = WorkedQuery(db).list_intervals(args.task_id)
    if not intervals:
        print("No intervals recorded.")
        return
    now = db.now()
    print(f"{'ID':<6} {'Start':<26} {'End':<26} {'Duration':<10}")
    print("-" * 70)
    for i in intervals:
        end = i.end.isoformat() if i.end else "running"
        print(f"{i.id:<6} {i.start.isoformat():<26} {end:<26} {format_duration(i.elapsed(now)):<10}")


def cmd_summary(args, db: TickrDB):
    """Show worked time totals."""
    rows = WorkedQuery(db).worked_summary(args.by, project=args.project)
    if args.by == SummaryScope.TASK.value:
        labels = {t.id: t.label for t in db.list_tasks()}
        rows = [(f"{key} {labels[key]}", total) for key, total in rows]
    for key, total in rows:
        print(f"{str(key):<40} {format_duration(total)}")


def cmd_export(args, db: TickrDB):
    """Export intervals to CSV."""
    count = WorkedQuery(db).export_csv(args.output, args.start, args.end)
    print(f"Exported {count} intervals to {args.output}")


def build_parser() -> argparse.ArgumentParser:
    examples = """
Examples:
  tickr project add Writing
  tickr category add Docs "#33AAFF"
  tickr task add Writing "Draft v1" -c Docs
  tickr task start Writing "Draft v1"
  tickr status
  tickr stop
  tickr task add Writing "Review" -s 2024-05-02T09:00 -e 2024-05-02T10:30
  tickr summary --by project
  tickr export -o worked.csv -s 2024-05-01T00:00
"""
    parser = argparse.ArgumentParser(
        prog="tickr",
        description="Terminal time tracker",
        epilog=examples,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--db", help="Path to database")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress")
    subparsers = parser.add_subparsers(dest="command")

    # Projects
    project_parser = subparsers.add_parser("project", help="Manage projects")
    project_sub = project_parser.add_subparsers(dest="action")
    add_proj = project_sub.add_parser("add", help="Add a project")
    add_proj.add_argument("name", help="Project name")
    project_sub.add_parser("list", help="List projects")
    worked_proj = project_sub.add_parser("worked", help="Projects worked on today")
    worked_proj.add_argument("--week", action="store_true", help="Last 7 days instead of today")

    # Categories
    category_parser = subparsers.add_parser("category", help="Manage categories")
    category_sub = category_parser.add_subparsers(dest="action")
    add_cat = category_sub.add_parser("add", help="Add a category")
    add_cat.add_argument("name", help="Category name")
    add_cat.add_argument("color", nargs="?", help="Hex color (random when omitted)")
    category_sub.add_parser("list", help="List categories")

    # Tasks
    task_parser = subparsers.add_parser("task", help="Manage tasks and timers")
    task_sub = task_parser.add_subparsers(dest="action")

    add_task = task_sub.add_parser("add", help="Add a task, or record past work with --start")
    add_task.add_argument("project", help="Project name")
    add_task.add_argument("label", help="Task label")
    add_task.add_argument("-c", "--category", help="Existing category name")
    add_task.add_argument("-s", "--start", type=parse_datetime, help="Start of worked interval")
    add_task.add_argument("-e", "--end", type=parse_datetime, help="End of worked interval")

    list_task = task_sub.add_parser("list", help="List tasks")
    list_task.add_argument("project", nargs="?", help="Only tasks of this project")

    edit_task = task_sub.add_parser("edit", help="Change label or category")
    edit_task.add_argument("id", type=int, help="Task ID")
    edit_task.add_argument("--label", help="New label")
    edit_task.add_argument("--category", help="Category name (created if missing)")
    edit_task.add_argument("--color", help="Color for a newly created category")
    edit_task.add_argument("--clear-category", action="store_true", help="Remove the category")

    for verb, help_text in (("start", "Start the timer"),
                            ("stop", "Stop the timer"),
                            ("toggle", "Start or stop the timer"),
                            ("switch", "Stop running tasks and start this one")):
        verb_parser = task_sub.add_parser(verb, help=help_text)
        verb_parser.add_argument("project", help="Project name")
        verb_parser.add_argument("label", help="Task label")

    # Timer shortcuts and reports
    subparsers.add_parser("stop", help="Stop the running task")
    subparsers.add_parser("status", help="Show running tasks")

    intervals_parser = subparsers.add_parser("intervals", help="List intervals of a task")
    intervals_parser.add_argument("task_id", type=int, help="Task ID")

    summary_parser = subparsers.add_parser("summary", help="Show worked time")
    summary_parser.add_argument("--by", default="all", choices=[s.value for s in SummaryScope],
                                help="Grouping (default: all)")
    summary_parser.add_argument("--project", help="Only this project")

    export_parser = subparsers.add_parser("export", help="Export intervals to CSV")
    export_parser.add_argument("-o", "--output", default="tickr_export.csv", help="Output file")
    export_parser.add_argument("-s", "--start", type=parse_datetime, help="Earliest interval start")
    export_parser.add_argument("-e", "--end", type=parse_datetime, help="Latest interval start")

    parser.set_defaults(
        subparsers={
            "project": project_parser,
            "category": category_parser,
            "task": task_parser,
        }
    )
    return parser


COMMANDS = {
    "project": cmd_project,
    "category": cmd_category,
    "task": cmd_task,
    "stop": cmd_stop,
    "status": cmd_status,
    "intervals": cmd_intervals,
    "summary": cmd_summary,
    "export": cmd_export,
}


def main(argv: list[str] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error: Cannot read config: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config["logging"].get("level", "WARNING"), args.verbose)
    args.db = resolve_db_path(args.db, config)

    if args.command in args.subparsers and not getattr(args, "action", None):
        args.subparsers[args.command].print_help()
        return

    db = open_db(args)
    log.debug(f"Using database {args.db}")
    try:
        if args.command is None:
            from .tui import TickrApp
            TickrApp(db).run()
        else:
            COMMANDS[args.command](args, db)
    except TickrError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
