"""Tests for worked time views and CSV export."""

import csv
import os
import tempfile
from datetime import timedelta

import pytest

from tickr.db import TickrDB
from tickr.errors import NotFound, ValidationError
from tickr.query import CSV_HEADER, WorkedQuery, format_duration


@pytest.fixture
def db(clock):
    """Create a temporary database with two projects."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    try:
        db = TickrDB(db_path, clock=clock)
        db.add_project("Writing")
        db.add_project("Admin")
        db.add_category("Docs", "112233")
        db.add_task("Writing", "Draft v1", "Docs")
        db.add_task("Admin", "Invoices")
        yield db
        db.close()
    finally:
        os.unlink(db_path)


@pytest.fixture
def worked(db):
    return WorkedQuery(db)


class TestWorkedSummary:
    """Tests for worked_summary."""

    def test_closed_plus_running(self, db, worked, clock):
        """Test a closed hour plus a running interval measured to now."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=7), day.replace(hour=8))
        t0 = day.replace(hour=8, minute=30)
        db.insert_interval(1, t0)

        clock.set(9, 15)
        expected = timedelta(hours=1) + (clock.now - t0)
        first = worked.worked_summary("task", task_id=1)
        second = worked.worked_summary("task", task_id=1)

        assert first == [(1, expected)]
        assert second == first

    def test_running_interval_grows(self, db, worked, clock):
        """Test the running total follows the clock."""
        db.insert_interval(1, clock.now)
        clock.advance(minutes=5)
        assert worked.worked_summary() == [("all", timedelta(minutes=5))]
        clock.advance(minutes=5)
        assert worked.worked_summary() == [("all", timedelta(minutes=10))]

    def test_scopes(self, db, worked, clock):
        """Test grouping by project, task and day."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=6), day.replace(hour=7))
        db.insert_interval(2, day.replace(hour=7), day.replace(hour=7, minute=30))
        db.insert_interval(1, day - timedelta(days=1, hours=2), day - timedelta(days=1, hours=1))

        assert worked.worked_summary("all") == [("all", timedelta(hours=2, minutes=30))]
        assert worked.worked_summary("project") == [
            ("Admin", timedelta(minutes=30)),
            ("Writing", timedelta(hours=2)),
        ]
        assert worked.worked_summary("task") == [
            (1, timedelta(hours=2)),
            (2, timedelta(minutes=30)),
        ]
        assert worked.worked_summary("day") == [
            ((day - timedelta(days=1)).date(), timedelta(hours=1)),
            (day.date(), timedelta(hours=1, minutes=30)),
        ]

    def test_filters(self, db, worked, clock):
        """Test filters narrow the intervals counted."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=6), day.replace(hour=7))
        db.insert_interval(2, day.replace(hour=7), day.replace(hour=7, minute=30))

        assert worked.worked_summary("all", project="Admin") == [("all", timedelta(minutes=30))]
        assert worked.worked_summary("project", project="Writing") == [("Writing", timedelta(hours=1))]
        assert worked.worked_summary("day", day=day.date(), task_id=2) == [
            (day.date(), timedelta(minutes=30)),
        ]

    def test_nothing_worked(self, worked):
        """Test explicit filters produce a zero row."""
        assert worked.worked_summary() == [("all", timedelta(0))]
        assert worked.worked_summary("task", task_id=2) == [(2, timedelta(0))]
        assert worked.worked_summary("project", project="Admin") == [("Admin", timedelta(0))]
        assert worked.worked_summary("project") == []

    def test_unknown_scope(self, worked):
        """Test invalid scopes are rejected."""
        with pytest.raises(ValidationError):
            worked.worked_summary("month")

    def test_unknown_filters(self, worked):
        """Test missing tasks and projects are reported."""
        with pytest.raises(NotFound):
            worked.worked_summary("task", task_id=99)
        with pytest.raises(NotFound):
            worked.worked_summary("project", project="Missing")


class TestListings:
    """Tests for interval listings and projects worked on."""

    def test_list_intervals_ordered(self, db, worked, clock):
        """Test intervals come back ordered by start."""
        day = clock.now
        later = db.insert_interval(1, day.replace(hour=7), day.replace(hour=8))
        earlier = db.insert_interval(1, day.replace(hour=5), day.replace(hour=6))
        assert [i.id for i in worked.list_intervals(1)] == [earlier.id, later.id]

        with pytest.raises(NotFound):
            worked.list_intervals(99)

    def test_projects_worked_on(self, db, worked, clock):
        """Test today and week ranges."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=6), day.replace(hour=7))
        db.insert_interval(2, day - timedelta(days=3), day - timedelta(days=3) + timedelta(hours=1))

        assert [p.name for p in worked.projects_worked_on("today")] == ["Writing"]
        assert [p.name for p in worked.projects_worked_on("week")] == ["Admin", "Writing"]

        with pytest.raises(ValidationError):
            worked.projects_worked_on("year")

    def test_format_duration(self):
        assert format_duration(timedelta(seconds=45)) == "45s"
        assert format_duration(timedelta(minutes=12, seconds=5)) == "12m"
        assert format_duration(timedelta(hours=2, minutes=5)) == "2h05m"


class TestExport:
    """Tests for CSV export."""

    def test_export_rows(self, db, worked, clock, tmp_path):
        """Test the export writes one row per interval."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=7), day.replace(hour=8))
        db.insert_interval(2, day.replace(hour=8, minute=30))

        out = tmp_path / "export.csv"
        assert worked.export_csv(out) == 2

        with open(out, newline='') as f:
            rows = list(csv.reader(f))
        assert rows[0] == CSV_HEADER
        assert rows[1] == ["Writing", "Draft v1", "Docs", day.replace(hour=7).isoformat(),
                           day.replace(hour=8).isoformat(), "3600"]
        assert rows[2][:3] == ["Admin", "Invoices", ""]
        assert rows[2][4] == "Running"
        assert rows[2][5] == "1800"

    def test_export_range(self, db, worked, clock, tmp_path):
        """Test only intervals starting inside the range are written."""
        day = clock.now
        db.insert_interval(1, day.replace(hour=5), day.replace(hour=6))
        db.insert_interval(1, day.replace(hour=7), day.replace(hour=8))

        out = tmp_path / "export.csv"
        assert worked.export_csv(out, start=day.replace(hour=6, minute=30)) == 1
