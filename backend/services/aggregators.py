"""Per-report rollups: age buckets, load pivots, creep, sweat and imbalance."""

from collections import namedtuple
from statistics import mean, median

AgeBucket = namedtuple("AgeBucket", ["label", "min_days", "max_days"])

AGE_BUCKETS = (
    AgeBucket("0-7 days", 0, 7),
    AgeBucket("1-2 weeks", 7, 14),
    AgeBucket("2-4 weeks", 14, 30),
    AgeBucket("1-3 months", 30, 90),
    AgeBucket("3-6 months", 90, 180),
    AgeBucket("6-12 months", 180, 365),
    AgeBucket("1-2 years", 365, 730),
    AgeBucket("2+ years", 730, float("inf")),
)

UNASSIGNED = "Unassigned"
DONE_STATUSES = frozenset(["done", "won't do", "wont do"])


def bucket_for_age(age_days: float) -> AgeBucket:
    """The first bucket whose half-open range ``[min, max)`` holds ``age_days``."""
    for bucket in AGE_BUCKETS:
        if bucket.min_days <= age_days < bucket.max_days:
            return bucket
    # Negative ages come from clock skew on just-created issues
    return AGE_BUCKETS[0]


def age_buckets(ages) -> list:
    """Issue counts per age bucket, with bar heights relative to the largest."""
    counts = {bucket.label: 0 for bucket in AGE_BUCKETS}
    for age in ages:
        counts[bucket_for_age(age).label] += 1

    max_count = max(counts.values()) if counts else 0
    return [
        {
            "label": bucket.label,
            "count": counts[bucket.label],
            "height": (counts[bucket.label] / max_count * 100) if max_count > 0 else 0,
        }
        for bucket in AGE_BUCKETS
    ]


def age_stats(ages) -> dict:
    ages = list(ages)
    if not ages:
        return {"total": 0, "min": 0, "max": 0, "average": 0, "median": 0}
    return {
        "total": len(ages),
        "min": min(ages),
        "max": max(ages),
        "average": mean(ages),
        "median": median(ages),
    }


def sort_assignees(names) -> list:
    """Alphabetical, case-insensitive, with Unassigned always last."""
    return sorted(set(names), key=lambda n: (n == UNASSIGNED, (n or "").lower()))


def load_pivot(rows, columns) -> dict:
    """Count ``(assignee, column)`` pairs into an assignee x column table.

    Args:
        rows: Iterable of ``(assignee, column)`` pairs, one per issue.
        columns: Column names in display order. Pairs for other columns
            are still counted and appended after them.

    Returns:
        Dict with ``columns``, ``assignees`` (sorted, Unassigned last),
        ``cells`` (assignee -> column -> count), per-assignee ``totals``,
        ``column_totals``, ``column_percentages`` and ``grand_total``.
    """
    columns = list(columns)
    cells = {}
    for assignee, column in rows:
        assignee = assignee or UNASSIGNED
        if column not in columns:
            columns.append(column)
        cells.setdefault(assignee, {})
        cells[assignee][column] = cells[assignee].get(column, 0) + 1

    assignees = sort_assignees(cells.keys())
    totals = {a: sum(cells[a].values()) for a in assignees}
    column_totals = {c: sum(cells[a].get(c, 0) for a in assignees) for c in columns}
    grand_total = sum(column_totals.values())
    column_percentages = {
        c: round(column_totals[c] / grand_total * 100, 1) if grand_total else 0.0
        for c in columns
    }

    return {
        "columns": columns,
        "assignees": assignees,
        "cells": cells,
        "totals": totals,
        "column_totals": column_totals,
        "column_percentages": column_percentages,
        "grand_total": grand_total,
    }


def completion_pct(completed: int, assigned: int, precision: int = 1):
    """``completed / assigned * 100`` rounded, or None when nothing was assigned."""
    if assigned <= 0:
        return None
    value = completed / assigned * 100
    return round(value) if precision == 0 else round(value, precision)


def creep_metrics(ended_with: int, added: int, removed: int, completed: int) -> dict:
    """Scope change over a sprint from its end-state counts.

    ``started_with`` is recovered as ``ended_with - added + removed`` and is
    never negative.
    """
    started_with = max(0, ended_with - added + removed)
    net_change = ended_with - started_with

    if started_with > 0:
        creep_pct = net_change / started_with * 100
        creep_display = f"{'+' if net_change >= 0 else ''}{creep_pct:.1f}%"
    else:
        creep_pct = None
        creep_display = "—"

    return {
        "started_with": started_with,
        "ended_with": ended_with,
        "added": added,
        "removed": removed,
        "completed": completed,
        "net_change": net_change,
        "creep_pct": creep_pct,
        "creep_display": creep_display,
        "completed_pct": f"{completed / ended_with * 100:.1f}" if ended_with > 0 else "—",
        "change_display": f"+ {added} / - {removed}",
    }


def imbalance_callout(load: dict, ratio: float = 2):
    """Flag the busiest person when their load is at least ``ratio`` x the mean.

    Every row counts toward the mean, Unassigned included.
    Returns ``{"name", "count", "avg"}`` or None.
    """
    if not load:
        return None
    avg = mean(load.values())
    name, count = max(load.items(), key=lambda item: item[1])
    if avg > 0 and count >= ratio * avg:
        return {"name": name, "count": count, "avg": round(avg, 1)}
    return None


def tally_completion(issues) -> dict:
    """Assigned and completed counts per assignee.

    Args:
        issues: Iterable of dicts with ``assignee`` and ``status``.
    """
    tally = {}
    for issue in issues:
        assignee = issue.get("assignee") or UNASSIGNED
        record = tally.setdefault(assignee, {"assigned": 0, "completed": 0})
        record["assigned"] += 1
        if (issue.get("status") or "").lower().strip() in DONE_STATUSES:
            record["completed"] += 1
    return tally


def sweat_cell(assigned: int, completed: int) -> dict:
    if assigned <= 0:
        return {"assigned": 0, "completed": 0, "text": "—"}
    return {
        "assigned": assigned,
        "completed": completed,
        "text": f"{assigned} ({completed / assigned * 100:.0f}%)",
    }


def sweat_pivot(sprint_tallies, names) -> list:
    """Assignee x sprint table of ``"assigned (pct%)"`` cells.

    Args:
        sprint_tallies: One ``tally_completion`` result per sprint, in column order.
        names: Assignees to include, already filtered and sorted.
    """
    rows = []
    for name in names:
        cells = []
        for tally in sprint_tallies:
            record = tally.get(name) or {"assigned": 0, "completed": 0}
            cells.append(sweat_cell(record["assigned"], record["completed"]))
        total_assigned = sum(c["assigned"] for c in cells)
        total_completed = sum(c["completed"] for c in cells)
        rows.append({
            "assignee": name,
            "cells": cells,
            "total_assigned": total_assigned,
            "total_completed": total_completed,
            "avg_pct": f"{total_completed / total_assigned * 100:.1f}%" if total_assigned else "—",
        })
    return rows
