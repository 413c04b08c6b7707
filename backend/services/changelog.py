"""Reconstruct status durations and field history from Jira changelogs."""

from collections import namedtuple
from datetime import datetime
from typing import Optional

from services.dates import parse_datetime, whole_days

StatusTransition = namedtuple("StatusTransition", ["date", "from_status", "to_status"])
SprintRef = namedtuple("SprintRef", ["id", "name", "state", "start_date", "end_date"])
FieldChange = namedtuple("FieldChange", ["date", "from_value", "to_value"])

DONE_STATUSES = frozenset(["done", "won't do", "wont do"])

# Changelog field name -> label used when the field is empty
TRACKED_FIELDS = {
    "status": "Unknown",
    "assignee": "Unassigned",
    "priority": "Unset",
    "issuetype": "Task",
}


def histories_of(changelog) -> list:
    """Changelog records from either the expanded issue shape or the paged endpoint."""
    if not changelog:
        return []
    if isinstance(changelog, list):
        return changelog
    return changelog.get("histories") or changelog.get("values") or []


def _sorted_histories(changelog) -> list:
    records = []
    for record in histories_of(changelog):
        created = parse_datetime(record.get("created"))
        if created is not None:
            records.append((created, record.get("items") or []))
    records.sort(key=lambda r: r[0])
    return records


def extract_status_transitions(changelog) -> list:
    """Status changes as ``StatusTransition`` tuples, oldest first."""
    transitions = []
    for created, items in _sorted_histories(changelog):
        for item in items:
            if item.get("field") == "status":
                transitions.append(StatusTransition(created, item.get("fromString"), item.get("toString")))
    return transitions


def created_in_current_status(transitions: list, current_status: str) -> bool:
    """True when the issue has sat in ``current_status`` since it was created."""
    return not transitions or transitions[0].from_status == current_status


def days_in_status(issue: dict, current_status: str, now: datetime, changelog=None) -> int:
    """Total whole days the issue has spent in ``current_status``.

    Every visit counts: an issue that left the status and came back adds up
    all of its stays, not just the latest one.
    """
    fields = issue.get("fields") or {}
    if changelog is None:
        changelog = issue.get("changelog")
    transitions = extract_status_transitions(changelog)

    entered_at = None
    if created_in_current_status(transitions, current_status):
        entered_at = parse_datetime(fields.get("created"))

    total = 0
    for transition in transitions:
        if transition.to_status == current_status and transition.from_status != current_status:
            entered_at = transition.date
        elif transition.from_status == current_status and transition.to_status != current_status:
            if entered_at is not None:
                total += whole_days(transition.date, entered_at)
                entered_at = None

    if entered_at is not None:
        total += whole_days(now, entered_at)

    return total


def normalize_sprints(value) -> list:
    """Turn a sprint field (object, list or missing) into a list of ``SprintRef``."""
    if not value:
        return []
    if not isinstance(value, list):
        value = [value]

    sprints = []
    for sprint in value:
        if isinstance(sprint, dict):
            if sprint.get("id") is None and not sprint.get("name"):
                continue
            sprints.append(SprintRef(
                sprint.get("id"),
                sprint.get("name"),
                sprint.get("state"),
                sprint.get("startDate"),
                sprint.get("endDate"),
            ))
        elif sprint is not None:
            sprints.append(SprintRef(sprint, None, None, None, None))
    return sprints


def issue_sprints(issue: dict, sprint_field: Optional[str] = None) -> list:
    """All sprints referenced by an issue's fields, de-duplicated by id."""
    fields = issue.get("fields") or {}
    candidates = []
    for name in (sprint_field, "sprint", "closedSprints"):
        if name:
            candidates.extend(normalize_sprints(fields.get(name)))

    seen = set()
    sprints = []
    for sprint in candidates:
        marker = sprint.id if sprint.id is not None else sprint.name
        if marker in seen:
            continue
        seen.add(marker)
        sprints.append(sprint)
    return sprints


def _split_ids(value) -> list:
    if value is None:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def distinct_sprint_count(issue: dict, changelog=None, sprint_field: Optional[str] = None) -> int:
    """Number of distinct sprints the issue has ever belonged to.

    Sprint changelog items carry both raw ids (``from``/``to``) and display
    names (``fromString``/``toString``). Ids are used whenever present so a
    sprint seen under both forms is only counted once.
    """
    if changelog is None:
        changelog = issue.get("changelog")

    current = issue_sprints(issue, sprint_field)
    ids_by_name = {s.name: str(s.id) for s in current if s.name and s.id is not None}
    seen = {str(s.id) if s.id is not None else ids_by_name.get(s.name, f"name:{s.name}") for s in current}

    for _, items in _sorted_histories(changelog):
        for item in items:
            field = (item.get("field") or "").lower()
            if field != "sprint" and (not sprint_field or item.get("fieldId") != sprint_field):
                continue
            raw_ids = _split_ids(item.get("from")) + _split_ids(item.get("to"))
            if raw_ids:
                seen.update(raw_ids)
                continue
            for name in _split_ids(item.get("fromString")) + _split_ids(item.get("toString")):
                seen.add(ids_by_name.get(name, f"name:{name}"))

    return len(seen)


def _current_value(fields: dict, field: str) -> str:
    value = fields.get(field)
    default = TRACKED_FIELDS[field]
    if not value:
        return default
    return value.get("displayName") or value.get("name") or default


def field_history(issue: dict, changelog, start: datetime, end: datetime) -> dict:
    """Value of each tracked field at ``start`` plus every change in ``[start, end]``.

    Returns a dict keyed by field name with ``initial``, ``current`` and
    ``changes`` (list of ``FieldChange``). Status changes whose from and to
    labels match are ignored.
    """
    fields = issue.get("fields") or {}
    history = {}
    for field, default in TRACKED_FIELDS.items():
        current = _current_value(fields, field)
        history[field] = {"initial": current, "current": current, "changes": [], "_settled": False}

    for created, items in _sorted_histories(changelog):
        for item in items:
            field = item.get("field")
            if field not in TRACKED_FIELDS:
                continue
            default = TRACKED_FIELDS[field]
            entry = history[field]
            from_value = item.get("fromString") or default
            to_value = item.get("toString") or default

            if created < start:
                entry["initial"] = to_value
                continue

            # First change at or after the window start tells us the starting value
            if not entry["_settled"]:
                entry["initial"] = from_value
                entry["_settled"] = True

            if created > end:
                continue
            if field == "status" and from_value == to_value:
                continue
            entry["changes"].append(FieldChange(created, from_value, to_value))

    for entry in history.values():
        del entry["_settled"]
    return history


def find_done_date(issue: dict, changelog=None) -> tuple:
    """When the issue was completed and whether it was Done or Won't Do.

    Uses the resolution date, else the first transition into a done status,
    else the last update time.
    """
    fields = issue.get("fields") or {}
    status = ((fields.get("status") or {}).get("name") or "").lower()

    resolution_status = None
    if status == "done":
        resolution_status = "Done"
    elif status in ("won't do", "wont do"):
        resolution_status = "Won't Do"

    done_date = parse_datetime(fields.get("resolutiondate"))
    if done_date is None:
        for transition in extract_status_transitions(changelog if changelog is not None else issue.get("changelog")):
            to_status = (transition.to_status or "").lower()
            if to_status in DONE_STATUSES:
                done_date = transition.date
                if resolution_status is None:
                    resolution_status = "Done" if to_status == "done" else "Won't Do"
                break

    if done_date is None:
        done_date = parse_datetime(fields.get("updated"))

    return done_date, resolution_status or "Done"


def latest_sprint(sprints: list) -> Optional[SprintRef]:
    """The sprint with the latest end date, ignoring dateless ones."""
    dated = [s for s in sprints if parse_datetime(s.end_date)]
    if not dated:
        return None
    return max(dated, key=lambda s: parse_datetime(s.end_date))
