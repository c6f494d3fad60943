# src/gitask/tasks/task_query.py

"""
Filtering, fuzzy matching, sorting and statistics over an in-memory collection.

Date range expressions (DateRange.parse):

    <date>              the whole cycle <date> falls in
    [<date>]-[<date>]   from the start of the first to the end of the second;
                        either side may be omitted (open range)

    <date> is absolute (YYYY/MM/DD, YYYY/MM, YYYY) or relative to now:
    [n]d, [n]w, [n]m, [n]y, combinable ("1w2d"). n defaults to 0, the current
    cycle. Relative dates are rounded to the start (or end) of the cycle of
    their last unit; a leading '+' keeps the exact offset instead.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from difflib import SequenceMatcher
from enum import StrEnum
from typing import Any

from ..core.ports import Clock, local_now
from ..errors import ValidationError
from .state_machine import elapsed_seconds
from .task_models import Priority, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.6

_RELATIVE_UNITS = "dwmy"
_RELATIVE_PART_RE = re.compile(r"(\d*)([dwmy])")
_ONE_TICK = timedelta(microseconds=1)


# ---- date ranges ----


def _add_months(value: datetime, months: int) -> datetime:
    total = value.year * 12 + (value.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    # Clamp the day (Mar 31 - 1 month -> Feb 28/29).
    day = min(value.day, _days_in_month(year, month))
    return value.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        nxt = datetime(year + 1, 1, 1)
    else:
        nxt = datetime(year, month + 1, 1)
    return (nxt - timedelta(days=1)).day


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _parse_absolute(text: str, now: datetime, is_end: bool) -> datetime:
    parts = text.split("/")
    if len(parts) > 3 or not all(p.strip().isdigit() for p in parts):
        raise ValidationError(f"Invalid date format: {text!r}")
    year, month, day = (int(p) for p in parts + ["1"] * (3 - len(parts)))
    try:
        start = datetime(year, month, day, tzinfo=now.tzinfo)
    except ValueError as e:
        raise ValidationError(f"Date does not exist: {text!r} ({e})") from None
    if not is_end:
        return start
    if len(parts) == 3:
        nxt = start + timedelta(days=1)
    elif len(parts) == 2:
        nxt = _add_months(start, 1)
    else:
        nxt = _add_months(start, 12)
    return nxt - _ONE_TICK


def _parse_relative(text: str, now: datetime, is_end: bool) -> datetime:
    exact = text.startswith("+")
    body = text[1:] if exact else text

    pos = 0
    days = 0
    months = 0
    last_unit = "d"
    for m in _RELATIVE_PART_RE.finditer(body):
        if m.start() != pos:
            break
        num = int(m.group(1) or 0)
        unit = m.group(2)
        if unit == "d":
            days += num
        elif unit == "w":
            days += num * 7
        elif unit == "m":
            months += num
        else:
            months += num * 12
        last_unit = unit
        pos = m.end()
    if pos != len(body) or not body:
        raise ValidationError(f"Invalid relative date: {text!r} (expected [n]d/w/m/y parts)")

    value = _add_months(now, -months) - timedelta(days=days)
    if exact:
        return value

    if last_unit == "d":
        start = _midnight(value)
        nxt = start + timedelta(days=1)
    elif last_unit == "w":
        start = _midnight(value) - timedelta(days=value.weekday())
        nxt = start + timedelta(days=7)
    elif last_unit == "m":
        start = _midnight(value).replace(day=1)
        nxt = _add_months(start, 1)
    else:
        start = _midnight(value).replace(month=1, day=1)
        nxt = _add_months(start, 12)
    return nxt - _ONE_TICK if is_end else start


def _parse_date(text: str, now: datetime, is_end: bool) -> datetime:
    text = text.strip()
    if not text:
        raise ValidationError("Empty date")
    try:
        if text[-1] in _RELATIVE_UNITS:
            return _parse_relative(text, now, is_end)
        return _parse_absolute(text, now, is_end)
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Date out of range: {text!r}") from e


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive range; None on either side means open."""

    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def parse(cls, expr: str, *, now: datetime | None = None) -> DateRange:
        now = now or local_now()
        parts = expr.strip().split("-")
        if len(parts) == 1:
            return cls(_parse_date(parts[0], now, False), _parse_date(parts[0], now, True))
        if len(parts) == 2:
            start, end = parts
            return cls(
                _parse_date(start, now, False) if start.strip() else None,
                _parse_date(end, now, True) if end.strip() else None,
            )
        raise ValidationError(f"Invalid date range format: {expr!r}")

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


# ---- fuzzy matching ----


def fuzzy_score(query: str, text: str) -> float:
    """
    Similarity of query to the best-matching part of text, in [0, 1].

    Case-insensitive. A substring match scores 1.0; otherwise the best
    SequenceMatcher ratio over windows of text as long as the query.
    """
    q = (query or "").strip().lower()
    t = (text or "").lower()
    if not q:
        return 1.0
    if not t:
        return 0.0
    if q in t:
        return 1.0
    if len(t) <= len(q):
        return SequenceMatcher(None, q, t).ratio()

    best = 0.0
    n = len(q)
    for i in range(len(t) - n + 1):
        ratio = SequenceMatcher(None, q, t[i : i + n]).ratio()
        if ratio > best:
            best = ratio
            if best == 1.0:
                break
    return best


# ---- filters ----


@dataclass(slots=True)
class FilterOptions:
    """Empty/None fields do not filter. Categories are ANDed."""

    statuses: frozenset[TaskStatus] = frozenset()
    priorities: frozenset[Priority] = frozenset()
    scopes: frozenset[str] = frozenset()
    task_types: frozenset[str] = frozenset()
    created: DateRange | None = None
    updated: DateRange | None = None
    completed: DateRange | None = None
    fuzzy: str | None = None
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD

    @classmethod
    def build(
        cls,
        *,
        status: TaskStatus | str | Iterable[TaskStatus | str] | None = None,
        priority: Priority | str | Iterable[Priority | str] | None = None,
        scope: str | Iterable[str] | None = None,
        task_type: str | Iterable[str] | None = None,
        created: DateRange | str | None = None,
        updated: DateRange | str | None = None,
        completed: DateRange | str | None = None,
        fuzzy: str | None = None,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
        clock: Clock = local_now,
    ) -> FilterOptions:
        """Convenience constructor accepting single values, strings and date expressions."""
        now = clock()

        def _range(value: DateRange | str | None) -> DateRange | None:
            if value is None or isinstance(value, DateRange):
                return value
            return DateRange.parse(value, now=now)

        try:
            statuses = frozenset(TaskStatus(str(s).lower()) for s in _as_set(status))
            priorities = frozenset(Priority(str(p).lower()) for p in _as_set(priority))
        except ValueError as e:
            raise ValidationError(str(e)) from None

        return cls(
            statuses=statuses,
            priorities=priorities,
            scopes=frozenset(_as_set(scope)),
            task_types=frozenset(_as_set(task_type)),
            created=_range(created),
            updated=_range(updated),
            completed=_range(completed),
            fuzzy=fuzzy or None,
            fuzzy_threshold=fuzzy_threshold,
        )

    def matches(self, task: Task) -> bool:
        if self.statuses and task.status not in self.statuses:
            return False
        if self.priorities and task.priority not in self.priorities:
            return False
        if self.scopes and task.scope not in self.scopes:
            return False
        if self.task_types and task.task_type not in self.task_types:
            return False
        if self.created is not None and not self.created.contains(task.created_at):
            return False
        if self.updated is not None and not self.updated.contains(task.updated_at):
            return False
        if self.completed is not None and not self.completed.contains(task.completed_at):
            return False
        if self.fuzzy and fuzzy_score(self.fuzzy, task.description) < self.fuzzy_threshold:
            return False
        return True


def _as_set(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


# ---- sorting ----


class SortField(StrEnum):
    PRIORITY = "p"
    SCOPE = "s"
    TYPE = "t"
    STATUS = "S"
    CREATED = "c"
    UPDATED = "u"
    COMPLETED = "C"
    TIME_SPENT = "T"


@dataclass(frozen=True, slots=True)
class SortKey:
    field: SortField
    descending: bool = False

    def __str__(self) -> str:
        return f"{'-' if self.descending else '+'}{self.field.value}"


DEFAULT_SORT: tuple[SortKey, ...] = (
    SortKey(SortField.STATUS, descending=True),
    SortKey(SortField.PRIORITY, descending=True),
    SortKey(SortField.SCOPE),
    SortKey(SortField.CREATED, descending=True),
)


def parse_sort_keys(expr: str) -> list[SortKey]:
    """
    Parse "+p-c" / "p-cS" style sort expressions.

    Each field code may be preceded by '+' (ascending, the default) or '-'.
    """
    keys: list[SortKey] = []
    descending = False
    pending_sign = False
    for ch in (expr or "").strip():
        if ch in "+-":
            if pending_sign:
                raise ValidationError(f"Invalid sort expression: {expr!r}")
            descending = ch == "-"
            pending_sign = True
            continue
        if ch.isspace() or ch == ",":
            continue
        try:
            sort_field = SortField(ch)
        except ValueError:
            raise ValidationError(f"Unknown sort field {ch!r} in {expr!r}") from None
        keys.append(SortKey(sort_field, descending))
        descending = False
        pending_sign = False
    if pending_sign:
        raise ValidationError(f"Dangling sort order in {expr!r}")
    return keys


def _sort_value(task: Task, sort_field: SortField) -> Any:
    if sort_field == SortField.PRIORITY:
        return task.priority.rank
    if sort_field == SortField.SCOPE:
        return task.scope
    if sort_field == SortField.TYPE:
        return task.task_type
    if sort_field == SortField.STATUS:
        return task.status.rank
    if sort_field == SortField.CREATED:
        return task.created_at
    if sort_field == SortField.UPDATED:
        return task.updated_at
    if sort_field == SortField.COMPLETED:
        return task.completed_at
    return task.time_spent


def sort_tasks(tasks: Iterable[Task], keys: Sequence[SortKey]) -> list[Task]:
    """
    Stable multi-key sort, ties broken by id.

    Unset values sort after set ones in ascending order (before them when
    descending).
    """
    result = sorted(tasks, key=lambda t: t.id)
    for key in reversed(keys):
        present = [t for t in result if _sort_value(t, key.field) is not None]
        missing = [t for t in result if _sort_value(t, key.field) is None]
        present.sort(key=lambda t: _sort_value(t, key.field), reverse=key.descending)
        result = missing + present if key.descending else present + missing
    return result


# ---- statistics ----


@dataclass(frozen=True, slots=True)
class TaskStats:
    count: int
    total_time_spent: float
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_priority: dict[Priority, int] = field(default_factory=dict)

    @classmethod
    def of(cls, tasks: Iterable[Task], now: datetime | None = None) -> TaskStats:
        """With now, the running session of an ACTIVE task counts towards total_time_spent."""
        items = list(tasks)
        running = 0.0
        if now is not None:
            running = sum(elapsed_seconds(t.started_at, now) for t in items if t.status == TaskStatus.ACTIVE)
        return cls(
            count=len(items),
            total_time_spent=sum(t.time_spent for t in items) + running,
            by_status=dict(Counter(t.status for t in items)),
            by_priority=dict(Counter(t.priority for t in items)),
        )


def query(
    tasks: Iterable[Task],
    filters: FilterOptions | None = None,
    sort: Sequence[SortKey] | None = None,
) -> list[Task]:
    filters = filters or FilterOptions()
    matched = [t for t in tasks if filters.matches(t)]
    result = sort_tasks(matched, DEFAULT_SORT if sort is None else sort)
    logger.debug("Query matched %s task(s)", len(result))
    return result
