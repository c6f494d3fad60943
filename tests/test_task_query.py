# tests/test_task_query.py

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from gitask.errors import ValidationError
from gitask.tasks.task_models import Priority, Task, TaskStatus
from gitask.tasks.task_query import (
    DEFAULT_SORT,
    DateRange,
    FilterOptions,
    SortField,
    SortKey,
    TaskStats,
    fuzzy_score,
    parse_sort_keys,
    query,
    sort_tasks,
)

from .fakes import T0

TZ = T0.tzinfo
NOW = datetime(2025, 5, 14, 15, 30, tzinfo=TZ)  # a Wednesday


def _task(tid: str, **kw) -> Task:
    created = kw.pop("created_at", T0)
    task = Task.create(kw.pop("description", f"task {tid}"), now=created, task_id=tid * 32)
    return replace(task, **kw)


# ---- date ranges ----


def test_absolute_single_date_covers_whole_day() -> None:
    r = DateRange.parse("2023/01/01", now=NOW)
    assert r.start == datetime(2023, 1, 1, tzinfo=TZ)
    assert r.end == datetime(2023, 1, 2, tzinfo=TZ) - timedelta(microseconds=1)


def test_absolute_month_and_year() -> None:
    month = DateRange.parse("2024/02", now=NOW)
    assert month.start == datetime(2024, 2, 1, tzinfo=TZ)
    assert month.end is not None and month.end.date() == datetime(2024, 2, 29).date()

    year = DateRange.parse("2023-2024", now=NOW)
    assert year.start == datetime(2023, 1, 1, tzinfo=TZ)
    assert year.end is not None and year.end.year == 2024 and year.end.month == 12


def test_open_ranges() -> None:
    r = DateRange.parse("2023/01/01-", now=NOW)
    assert r.start is not None and r.end is None
    r = DateRange.parse("-2023/12/31", now=NOW)
    assert r.start is None and r.end is not None


def test_relative_ranges_round_to_cycle() -> None:
    today = DateRange.parse("d", now=NOW)
    assert today.start == datetime(2025, 5, 14, tzinfo=TZ)
    assert today.end is not None and today.end.date() == NOW.date()

    week = DateRange.parse("w", now=NOW)
    assert week.start == datetime(2025, 5, 12, tzinfo=TZ)  # Monday

    last_month = DateRange.parse("1m", now=NOW)
    assert last_month.start == datetime(2025, 4, 1, tzinfo=TZ)
    assert last_month.end is not None and last_month.end.date() == datetime(2025, 4, 30).date()

    combined = DateRange.parse("1w2d-", now=NOW)
    assert combined.start == datetime(2025, 5, 5, tzinfo=TZ)


def test_exact_relative_offset() -> None:
    r = DateRange.parse("+3d-", now=NOW)
    assert r.start == NOW - timedelta(days=3)


@pytest.mark.parametrize("expr", ["invalid", "2023/13/01", "2023/01/32", "1-2-3", "3x", "3000y", "9999"])
def test_invalid_date_expressions(expr: str) -> None:
    with pytest.raises(ValidationError):
        DateRange.parse(expr, now=NOW)


def test_date_range_bounds_are_inclusive() -> None:
    a, b = T0, T0 + timedelta(days=1)
    r = DateRange(a, b)
    assert r.contains(a) and r.contains(b)
    assert not r.contains(b + timedelta(microseconds=1))
    assert not r.contains(None)


# ---- filters ----


def test_filters_and_across_categories() -> None:
    tasks = [
        _task("a", priority=Priority.HIGH, scope="work"),
        _task("b", priority=Priority.HIGH, scope="home"),
        _task("c", priority=Priority.LOW, scope="work"),
    ]
    f = FilterOptions.build(priority="high", scope="work")
    assert [t.id[0] for t in query(tasks, f)] == ["a"]

    f = FilterOptions.build(scope=["work", "home"], priority=["high"])
    assert {t.id[0] for t in query(tasks, f)} == {"a", "b"}


def test_completed_range_excludes_unset() -> None:
    done = _task("a", status=TaskStatus.DONE, completed_at=T0 + timedelta(hours=1), updated_at=T0 + timedelta(hours=1))
    pending = _task("b")
    f = FilterOptions(completed=DateRange(T0, T0 + timedelta(days=1)))
    assert query([done, pending], f) == [done]


def test_fuzzy_matching() -> None:
    assert fuzzy_score("laundry", "Do LAUNDRY today") == 1.0
    assert fuzzy_score("laundy", "Do laundry") >= 0.8
    assert fuzzy_score("taxes", "Do laundry") < 0.6

    tasks = [_task("a", description="Do laundry"), _task("b", description="Pay taxes")]
    f = FilterOptions.build(fuzzy="landry")
    assert [t.id[0] for t in query(tasks, f)] == ["a"]


def test_unknown_status_in_filter_is_rejected() -> None:
    with pytest.raises(ValidationError):
        FilterOptions.build(status="sleeping")


# ---- sorting ----


def test_parse_sort_keys() -> None:
    assert parse_sort_keys("+p-c") == [SortKey(SortField.PRIORITY), SortKey(SortField.CREATED, True)]
    assert parse_sort_keys("pS") == [SortKey(SortField.PRIORITY), SortKey(SortField.STATUS)]
    with pytest.raises(ValidationError):
        parse_sort_keys("+x")
    with pytest.raises(ValidationError):
        parse_sort_keys("p-")
    assert str(SortKey(SortField.STATUS, True)) == "-S"


def test_sort_is_multi_key_with_id_ties() -> None:
    tasks = [
        _task("c", priority=Priority.HIGH, scope="b"),
        _task("a", priority=Priority.HIGH, scope="b"),
        _task("b", priority=Priority.URGENT, scope="a"),
        _task("d", priority=Priority.LOW),
    ]
    ordered = sort_tasks(tasks, parse_sort_keys("-p+s"))
    assert [t.id[0] for t in ordered] == ["b", "a", "c", "d"]


def test_unset_values_sort_last_ascending() -> None:
    tasks = [_task("a"), _task("b", scope="x")]
    assert [t.id[0] for t in sort_tasks(tasks, [SortKey(SortField.SCOPE)])] == ["b", "a"]
    assert [t.id[0] for t in sort_tasks(tasks, [SortKey(SortField.SCOPE, True)])] == ["a", "b"]


def test_default_sort() -> None:
    tasks = [
        _task("a", priority=Priority.LOW),
        _task("b", priority=Priority.HIGH),
        _task("c", status=TaskStatus.ACTIVE, started_at=T0),
    ]
    assert [t.id[0] for t in query(tasks)] == ["c", "b", "a"]
    assert DEFAULT_SORT[0] == SortKey(SortField.STATUS, True)


# ---- stats ----


def test_stats_over_filtered_result() -> None:
    tasks = [
        _task("a", time_spent=60.0, scope="work"),
        _task("b", time_spent=30.0, scope="work", priority=Priority.HIGH),
        _task("c", time_spent=1000.0, scope="home"),
    ]
    stats = TaskStats.of(query(tasks, FilterOptions.build(scope="work")))
    assert stats.count == 2
    assert stats.total_time_spent == pytest.approx(90.0)
    assert stats.by_priority == {Priority.NORMAL: 1, Priority.HIGH: 1}
    assert stats.by_status == {TaskStatus.PENDING: 2}


def test_stats_count_the_running_session() -> None:
    tasks = [
        _task("a", time_spent=30.0, status=TaskStatus.ACTIVE, started_at=T0),
        _task("b", time_spent=10.0),
    ]
    assert TaskStats.of(tasks).total_time_spent == pytest.approx(40.0)
    stats = TaskStats.of(tasks, now=T0 + timedelta(seconds=60))
    assert stats.total_time_spent == pytest.approx(100.0)
