"""Issue-level reports: stuck, done, backlog, progress and load."""

import logging
from datetime import timedelta
from typing import Optional

from services.aggregators import age_buckets, age_stats, load_pivot, sort_assignees
from services.changelog import (
    distinct_sprint_count,
    field_history,
    find_done_date,
    issue_sprints,
    days_in_status,
)
from services.dates import fractional_days, parse_datetime, resolve_period, whole_days
from services.errors import JiraApiError
from services.formatters import (
    format_completion_duration,
    format_date_time,
    format_duration,
    format_long_date,
    key_number,
)
from services.identity_cache import UNASSIGNED
from services.pull_requests import extract_pr_info
from services.reporting import ReportService, stuck_badge

logger = logging.getLogger(__name__)

STUCK_MIN_DAYS = 7
OTHER_COLUMN = "Other"
DONE_JQL = 'status in (Done, "Won\'t Do")'
EXCLUDED_BACKLOG_TYPES = ("epic", "subtask")

DEFAULT_BOARD_COLUMNS = [
    {"name": "To Do", "statuses": ["To Do"]},
    {"name": "In Progress", "statuses": ["In Progress", "Ready for Development"]},
    {"name": "In Review", "statuses": ["In Review"]},
    {"name": "Done", "statuses": ["Done", "Won't Do", "Wont Do"]},
]


def quoted_list(values) -> str:
    return ", ".join(f'"{v}"' for v in values)


def statuses_for_column_name(name: str) -> list:
    """Guess the statuses of a board column that lists none."""
    lowered = (name or "").lower()
    if "to do" in lowered or "todo" in lowered:
        return ["To Do"]
    if "ready" in lowered or "development" in lowered:
        return ["Ready for Development"]
    if "progress" in lowered:
        return ["In Progress"]
    if "review" in lowered:
        return ["In Review"]
    if "done" in lowered:
        return ["Done", "Won't Do", "Wont Do"]
    return []


def parse_board_columns(configuration: dict, status_names: Optional[dict] = None) -> list:
    """Board columns as ``[{"name", "statuses"}]`` from a board configuration."""
    status_names = status_names or {}
    columns = []
    for column in (configuration.get("columnConfig") or {}).get("columns") or []:
        statuses = []
        for status in column.get("statuses") or []:
            if isinstance(status, dict):
                value = status.get("name") or status_names.get(str(status.get("id"))) or status.get("id")
            else:
                value = status
            if value:
                statuses.append(str(value))
        if not statuses:
            statuses = statuses_for_column_name(column.get("name"))
        columns.append({"name": column.get("name"), "statuses": statuses})
    return columns


def column_for_status(status: str, columns: list) -> str:
    """Board column holding ``status``; Won't Do lands in the done column."""
    normalized = (status or "").lower().strip()
    wont_do = normalized in ("won't do", "wont do")
    for column in columns:
        column_statuses = [s.lower().strip() for s in column["statuses"]]
        if normalized in column_statuses or (wont_do and "done" in column_statuses):
            return column["name"]
        column_name = (column["name"] or "").lower().strip()
        if column_name == normalized or (wont_do and "done" in column_name):
            return column["name"]
    return OTHER_COLUMN


class IssueReportService(ReportService):
    """Reports built from JQL searches over individual issues."""

    def _require_project_key(self) -> str:
        key = self.project_key()
        if not key:
            raise JiraApiError("Could not determine project key. Please check board configuration.")
        return key

    def _latest_sprint_name(self, issue: dict, sprint_field: str) -> str:
        sprint = self.latest_sprint_for(issue_sprints(issue, sprint_field))
        return sprint.name if sprint and sprint.name else "Backlog"

    # -- /slow --------------------------------------------------------------

    def get_stuck_report(self) -> dict:
        """Open-sprint tickets that have sat in a working status for a week or more."""
        project_key = self._require_project_key()
        statuses = list(self.settings.target_statuses)
        jql = (f"status in ({quoted_list(statuses)}) AND project = \"{project_key}\" "
               f"AND sprint in openSprints()")

        keys = [issue["key"] for issue in self.jira.find_issues(jql, "key")]
        logger.info(f"Stuck report: {len(keys)} candidate issues")

        sprint_field = self.jira.get_sprint_field_id()
        details = self.jira.fetch_issue_details(
            keys, ["summary", "status", "assignee", "created", "issuetype", sprint_field]
        )
        extras = self.fetch_issue_extras(details, links=True)
        sprint = self.active_sprint()
        sprint_days = self.sprint_days(sprint)
        now = self.now()

        stuck = []
        for issue in details:
            fields = issue.get("fields") or {}
            status = (fields.get("status") or {}).get("name") or "Unknown"
            issue_extras = extras.get(issue["key"], {})
            days = days_in_status(issue, status, now, issue_extras.get("changelog"))
            if days < STUCK_MIN_DAYS:
                continue
            assignee, avatar = self.assignee_of(fields.get("assignee"))
            stuck.append({
                "key": issue["key"],
                "summary": fields.get("summary", ""),
                "status": status,
                "issue_type": (fields.get("issuetype") or {}).get("name") or "Task",
                "assignee": assignee,
                "avatar_url": avatar,
                "days": days,
                "sprint_count": distinct_sprint_count(issue, issue_extras.get("changelog"), sprint_field),
                "prs": extract_pr_info(issue_extras.get("remote_links"), issue_extras.get("dev_info")),
                "badge": stuck_badge(days, sprint_days),
                "link": self.browse_url(issue["key"]),
            })

        resolved = self.resolve_assignees({row["key"]: row["assignee"] for row in stuck})
        self.apply_resolved(stuck, resolved)

        groups = {status: [] for status in statuses}
        for row in stuck:
            groups.setdefault(row["status"], []).append(row)
        for rows in groups.values():
            rows.sort(key=lambda r: r["days"], reverse=True)

        return {
            "statuses": statuses,
            "groups": groups,
            "total": len(stuck),
            "all_assignees": sort_assignees(row["assignee"] for row in stuck),
            "sprint_name": (sprint or {}).get("name"),
            "sprint_days": sprint_days,
        }

    # -- /done --------------------------------------------------------------

    def get_done_report(self, period: Optional[str] = None) -> dict:
        """Tickets completed inside the reporting window, newest key first."""
        now = self.now()
        window = resolve_period(period or "this-sprint", now, fallback="this-month")

        jql = (f"{DONE_JQL} "
               f"AND resolutiondate >= \"{(window.start - timedelta(days=1)):%Y-%m-%d}\" "
               f"AND resolutiondate <= \"{(window.end + timedelta(days=1)):%Y-%m-%d}\" "
               f"AND sprint IS NOT EMPTY")
        if window.use_sprint_filter:
            jql += f" AND project = \"{self._require_project_key()}\" AND sprint in openSprints()"

        keys = [issue["key"] for issue in self.jira.find_issues(jql, "key")]
        sprint_field = self.jira.get_sprint_field_id()
        details = self.jira.fetch_issue_details(keys, [
            "summary", "status", "assignee", "reporter", "created", "resolutiondate",
            "updated", "issuetype", "resolution", sprint_field,
        ])
        changelogs = self.jira.fetch_changelogs([issue["key"] for issue in details])

        done = []
        for issue in details:
            fields = issue.get("fields") or {}
            done_date, resolution_status = find_done_date(issue, changelogs.get(issue["key"]))
            if done_date is None:
                continue
            done_local = done_date.astimezone(self.tz)
            if not window.start.date() <= done_local.date() <= window.end.date():
                continue
            created = parse_datetime(fields.get("created")) or done_date
            assignee, avatar = self.assignee_of(fields.get("assignee"))
            reporter, _ = self.assignee_of(fields.get("reporter"))
            done.append({
                "key": issue["key"],
                "summary": fields.get("summary", ""),
                "issue_type": (fields.get("issuetype") or {}).get("name") or "Task",
                "assignee": assignee,
                "avatar_url": avatar,
                "reporter": reporter,
                "resolution_status": resolution_status,
                "sprint": self._latest_sprint_name(issue, sprint_field),
                "completed_at": done_local,
                "completed_text": format_date_time(done_local),
                "days_to_complete": whole_days(done_date, created),
                "duration_text": format_completion_duration(created, done_date),
                "link": self.browse_url(issue["key"]),
            })

        resolved = self.resolve_assignees({row["key"]: row["assignee"] for row in done})
        self.apply_resolved(done, resolved)
        done.sort(key=lambda r: key_number(r["key"]), reverse=True)

        return {
            "period": window.period,
            "period_label": window.label,
            "start": format_long_date(window.start),
            "end": format_long_date(window.end),
            "issues": done,
            "total": len(done),
            "wont_do": sum(1 for row in done if row["resolution_status"] == "Won't Do"),
        }

    # -- /backlog -----------------------------------------------------------

    def get_backlog_report(self) -> dict:
        """Age profile of open tickets outside the open and future sprints."""
        project_key = self._require_project_key()
        jql = (f"status not in (Done, \"Won't Do\") AND project = \"{project_key}\" "
               f"AND (sprint IS EMPTY OR (sprint NOT in openSprints() AND sprint NOT in futureSprints())) "
               f"ORDER BY created ASC")

        keys = [issue["key"] for issue in self.jira.find_issues(jql, "key")]
        sprint_field = self.jira.get_sprint_field_id()
        details = self.jira.fetch_issue_details(
            keys, ["summary", "status", "created", "issuetype", "reporter", sprint_field]
        )
        now = self.now()

        rows = []
        for issue in details:
            fields = issue.get("fields") or {}
            issue_type = (fields.get("issuetype") or {}).get("name") or "Task"
            if issue_type.lower().replace("-", "") in EXCLUDED_BACKLOG_TYPES:
                continue
            created = parse_datetime(fields.get("created"))
            if created is None:
                continue
            age = fractional_days(now, created)
            reporter, _ = self.assignee_of(fields.get("reporter"))
            rows.append({
                "key": issue["key"],
                "summary": fields.get("summary", ""),
                "status": (fields.get("status") or {}).get("name") or "Unknown",
                "issue_type": issue_type,
                "reporter": reporter,
                "created": created,
                "created_text": format_long_date(created.astimezone(self.tz)),
                "age_days": age,
                "age_text": format_duration(age),
                "sprint": self._latest_sprint_name(issue, sprint_field),
                "link": self.browse_url(issue["key"]),
            })

        rows.sort(key=lambda r: r["created"], reverse=True)
        ages = [row["age_days"] for row in rows]
        stats = age_stats(ages)
        return {
            "issues": rows,
            "stats": stats,
            "stats_text": {
                name: format_duration(stats[name]) for name in ("min", "max", "average", "median")
            },
            "buckets": age_buckets(ages),
        }

    # -- /progress ----------------------------------------------------------

    def get_progress_report(self, period: Optional[str] = None, days: Optional[int] = None) -> dict:
        """Tickets whose status, assignee, priority or type changed in the window."""
        now = self.now()
        window = resolve_period(period or "this-sprint", now, days=days, fallback="last-7-days")

        jql = (f"updated >= \"{window.start:%Y-%m-%d}\" "
               f"AND updated < \"{(window.end + timedelta(days=1)):%Y-%m-%d}\"")
        if window.use_sprint_filter:
            jql += f" AND project = \"{self._require_project_key()}\" AND sprint in openSprints()"

        keys = [issue["key"] for issue in self.jira.find_issues(jql, "key")]
        details = self.jira.fetch_issue_details(keys, [
            "summary", "status", "assignee", "priority", "created", "updated", "issuetype", "reporter",
        ])
        changelogs = self.jira.fetch_changelogs([issue["key"] for issue in details])

        rows = []
        for issue in details:
            fields = issue.get("fields") or {}
            changelog = changelogs.get(issue["key"])
            history = field_history(issue, changelog, window.start, window.end)

            status = history["status"]
            flags = {
                "has_status_change": bool(status["changes"]) and status["initial"] != status["current"],
            }
            for field in ("assignee", "priority", "issuetype"):
                entry = history[field]
                flags[f"has_{field}_change"] = bool(entry["changes"]) or entry["initial"] != entry["current"]
            if not any(flags.values()):
                continue

            changed_at = [change.date for entry in history.values() for change in entry["changes"]]
            last_change = max(changed_at) if changed_at else parse_datetime(fields.get("updated"))
            assignee, avatar = self.assignee_of(fields.get("assignee"))
            row = {
                "key": issue["key"],
                "summary": fields.get("summary", ""),
                "assignee": assignee,
                "avatar_url": avatar,
                "history": {
                    field: {
                        "initial": entry["initial"],
                        "current": entry["current"],
                        "changes": [
                            {"date": format_date_time(c.date.astimezone(self.tz)), "from": c.from_value, "to": c.to_value}
                            for c in entry["changes"]
                        ],
                    }
                    for field, entry in history.items()
                },
                "last_change": last_change,
                "last_change_text": format_date_time(last_change.astimezone(self.tz)) if last_change else None,
                "link": self.browse_url(issue["key"]),
            }
            row.update(flags)
            rows.append(row)

        resolved = self.resolve_assignees({row["key"]: row["assignee"] for row in rows})
        self.apply_resolved(rows, resolved)
        rows.sort(key=lambda r: r["last_change"] or now, reverse=True)

        return {
            "period": window.period,
            "period_label": window.label,
            "days": days,
            "start": format_long_date(window.start),
            "end": format_long_date(window.end),
            "issues": rows,
            "total": len(rows),
        }

    # -- /load --------------------------------------------------------------

    def board_columns(self) -> list:
        try:
            columns = parse_board_columns(self.jira.get_board_configuration(), self.jira.get_status_names())
        except JiraApiError as e:
            logger.warning(f"Board configuration unavailable, using default columns: {e}")
            return [dict(column) for column in DEFAULT_BOARD_COLUMNS]
        return columns or [dict(column) for column in DEFAULT_BOARD_COLUMNS]

    def upcoming_sprints(self) -> list:
        """Sprints that have not started yet, soonest end date first."""
        now = self.now()
        upcoming = []
        for sprint in self.jira.get_sprints(state="future,active"):
            start = parse_datetime(sprint.get("startDate"))
            end = parse_datetime(sprint.get("endDate"))
            if start and end and start <= now <= end:
                continue
            if start is None or start > now:
                upcoming.append(sprint)
        # Dateless sprints last
        upcoming.sort(key=lambda s: (parse_datetime(s.get("endDate")) is None,
                                     parse_datetime(s.get("endDate")) or now))
        return upcoming

    def get_load_report(self) -> dict:
        """Assignee x board column for the active sprint, plus upcoming sprint load."""
        project_key = self._require_project_key()
        columns = self.board_columns()
        logger.debug("Board columns: " + " | ".join(f"{c['name']}: {c['statuses']}" for c in columns))

        current = self.jira.fetch_board_issues(
            f"project = \"{project_key}\" AND sprint in openSprints() ORDER BY created DESC",
            "key,status,assignee,sprint",
        )

        sprint = None
        sprint_ids = [s.id for issue in current for s in issue_sprints(issue) if s.id is not None]
        if sprint_ids:
            try:
                sprint = self.jira.get_sprint(sprint_ids[0])
            except JiraApiError as e:
                logger.warning(f"Sprint {sprint_ids[0]} details unavailable: {e}")

        avatars = {}
        pairs = []
        for issue in current:
            fields = issue.get("fields") or {}
            assignee, avatar = self.assignee_of(fields.get("assignee"))
            if avatar and assignee not in avatars:
                avatars[assignee] = avatar
            status = (fields.get("status") or {}).get("name") or "Unknown"
            pairs.append((assignee, column_for_status(status, columns)))

        current_pivot = load_pivot(pairs, [c["name"] for c in columns])
        current_assignees = set(current_pivot["assignees"])

        upcoming = []
        try:
            upcoming = self.upcoming_sprints()
        except JiraApiError as e:
            logger.warning(f"Upcoming sprints unavailable: {e}")

        upcoming_pairs = []
        if upcoming:
            future = self.jira.fetch_board_issues(
                f"project = \"{project_key}\" AND sprint in futureSprints() ORDER BY created DESC",
                "key,assignee,sprint",
            )
            names = {s["id"]: s.get("name") for s in upcoming}
            for issue in future:
                sprints = issue_sprints(issue)
                if not sprints or sprints[0].id not in names:
                    continue
                assignee, _ = self.assignee_of((issue.get("fields") or {}).get("assignee"))
                if assignee in current_assignees or assignee == UNASSIGNED:
                    upcoming_pairs.append((assignee, names[sprints[0].id]))

        return {
            "project_key": project_key,
            "sprint": {
                "id": sprint.get("id"),
                "name": sprint.get("name"),
                "start": format_long_date(self.local(sprint.get("startDate"))),
                "end": format_long_date(self.local(sprint.get("endDate"))),
            } if sprint else None,
            "columns": columns,
            "current": current_pivot,
            "upcoming_sprints": [s.get("name") for s in upcoming],
            "upcoming": load_pivot(upcoming_pairs, [s.get("name") for s in upcoming]),
            "avatars": avatars,
            "total_issues": len(current),
        }
