"""Last-sprint retrospective digest."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from statistics import median
from typing import Optional

from services.aggregators import imbalance_callout, sort_assignees
from services.changelog import days_in_status
from services.dates import fractional_days, parse_datetime, whole_days
from services.errors import NoClosedSprintError
from services.formatters import first_name
from services.issue_reports import quoted_list
from services.pull_requests import PullRequestService
from services.reporting import priority_level, stuck_badge
from services.sprint_reports import SprintReportService

logger = logging.getLogger(__name__)

STUCK_MIN_DAYS = 7
DONE_LIMIT = 50
BACKLOG_SAMPLE = 500


def format_generated_at(value: datetime) -> str:
    """Timestamp as "Jan 5, 2026 3:04 PM"."""
    hour = value.hour % 12 or 12
    return f"{value:%b} {value.day}, {value.year} {hour}:{value:%M %p}"


def retro_notes(digest: dict) -> list:
    notes = []
    carried = digest["incomplete"]["total"]
    if carried > 0:
        notes.append({"type": "summary", "message": f"{carried} ticket(s) incomplete in sprint (carried over)."})
    return notes


class RetroService(SprintReportService):
    """Builds the retro digest for the most recently closed sprint.

    Every section is computed concurrently and fails on its own: a section
    that raises is logged and replaced with an empty default so the rest of
    the digest still renders.
    """

    def __init__(self, jira, settings, identity_cache=None, pull_requests: Optional[PullRequestService] = None,
                 now: Optional[datetime] = None):
        super().__init__(jira, settings, identity_cache, now=now)
        self.pull_requests = pull_requests
        self.digest_settings = settings.digest

    def last_closed_sprint(self) -> dict:
        now = self.now()
        closed = []
        for sprint in self.jira.get_sprints(state="closed"):
            end = parse_datetime(sprint.get("endDate"))
            if end and end < now:
                closed.append((end, sprint))
        if not closed:
            raise NoClosedSprintError("No closed sprint found for retro.")
        closed.sort(key=lambda pair: pair[0], reverse=True)
        return closed[0][1]

    def _row(self, issue: dict) -> dict:
        fields = issue.get("fields") or {}
        assignee, avatar = self.assignee_of(fields.get("assignee"))
        return {
            "key": issue["key"],
            "summary": fields.get("summary") or "",
            "assignee": assignee,
            "avatar_url": avatar,
            "issue_type": (fields.get("issuetype") or {}).get("name") or "Task",
            "link": self.browse_url(issue["key"]),
        }

    def _finish_rows(self, rows: list) -> list:
        self._resolve_rows(rows)
        for row in rows:
            row["assignee_short"] = first_name(row["assignee"])
        return rows

    def _sprint_jql(self, project_key: str, sprint: dict, extra: str = "") -> str:
        jql = f"project = \"{project_key}\" AND sprint = {sprint['id']}"
        return f"{jql} AND {extra}" if extra else jql

    # -- sections -----------------------------------------------------------

    def done_section(self, project_key, sprint) -> dict:
        data = self.jira.get_board_issues(
            self._sprint_jql(project_key, sprint, 'status in (Done, "Won\'t Do")'),
            "key,summary,assignee,resolutiondate,issuetype",
            max_results=DONE_LIMIT,
        )
        issues = (data.get("issues") or [])[:DONE_LIMIT]
        rows = self._finish_rows([self._row(issue) for issue in issues])
        return {"count": data.get("total", len(issues)), "issues": rows, "period_label": sprint.get("name")}

    def incomplete_section(self, project_key, sprint) -> dict:
        now = self.now()
        issues = self.jira.fetch_board_issues(
            self._sprint_jql(project_key, sprint, 'status not in (Done, "Won\'t Do")'),
            "key,summary,status,assignee,updated,issuetype",
        )
        rows = []
        for issue in issues:
            fields = issue.get("fields") or {}
            row = self._row(issue)
            updated = parse_datetime(fields.get("updated")) or now
            row["summary"] = row["summary"][:80]
            row["status"] = (fields.get("status") or {}).get("name") or "—"
            row["days_not_updated"] = whole_days(now, updated)
            rows.append(row)
        return {"incomplete": self._finish_rows(rows), "total": len(rows)}

    def backlog_section(self, project_key) -> dict:
        now = self.now()
        jql = ("status not in (Done, \"Won't Do\") AND "
               f"project = \"{project_key}\" AND (sprint IS EMPTY OR "
               "(sprint NOT in openSprints() AND sprint NOT in futureSprints()))")
        data = self.jira.search_issues(jql, ["created"], max_results=BACKLOG_SAMPLE)

        ages = []
        for issue in data.get("issues") or []:
            created = parse_datetime((issue.get("fields") or {}).get("created"))
            if created:
                ages.append(fractional_days(now, created))
        if not ages:
            return {"count": 0, "median_weeks": None, "note": None}

        median_weeks = round(median(ages) / 7, 1)
        threshold = self.digest_settings.backlog_age_weeks_threshold
        note = None
        if median_weeks >= threshold:
            note = f"Backlog median age is {median_weeks} weeks (over {threshold}). Consider a grooming pass."
        return {"count": len(ages), "median_weeks": median_weeks, "note": note}

    def high_priority_section(self, project_key, sprint) -> list:
        names = quoted_list(self.digest_settings.high_priority_names)
        data = self.jira.get_board_issues(
            self._sprint_jql(project_key, sprint, f"priority in ({names})"),
            "key,summary,assignee,status,priority,issuetype",
            max_results=50,
        )
        rows = []
        for issue in data.get("issues") or []:
            row = self._row(issue)
            row["summary"] = row["summary"][:50]
            row["status"] = ((issue.get("fields") or {}).get("status") or {}).get("name") or "—"
            rows.append(row)
        return self._finish_rows(rows)

    def pr_section(self) -> Optional[dict]:
        if self.pull_requests is None or not self.settings.github_configured:
            return None
        return self.pull_requests.get_retro_summary(
            self.now(), open_days_threshold=self.digest_settings.pr_open_days_threshold
        )

    def stuck_section(self, project_key, sprint) -> list:
        now = self.now()
        issues = self.jira.fetch_board_issues(
            self._sprint_jql(project_key, sprint, 'status not in (Done, "Won\'t Do")'),
            "key,summary,status,assignee,created,priority,issuetype",
        )
        changelogs = self.jira.fetch_changelogs([issue["key"] for issue in issues])
        sprint_days = self.sprint_days(sprint)

        rows = []
        for issue in issues:
            fields = issue.get("fields") or {}
            status = (fields.get("status") or {}).get("name") or "—"
            days = days_in_status(issue, status, now, changelogs.get(issue["key"]))
            if days < STUCK_MIN_DAYS:
                continue
            priority = str((fields.get("priority") or {}).get("name") or "Medium")
            row = self._row(issue)
            row.update({
                "summary": row["summary"][:80],
                "status": status,
                "days_in_status": days,
                "badge": stuck_badge(days, sprint_days),
                "priority_name": priority,
                "priority_level": priority_level(priority),
            })
            rows.append(row)

        rows = self._finish_rows(rows)
        rows.sort(key=lambda r: r["days_in_status"], reverse=True)
        return rows

    def load_section(self, project_key, sprint) -> Optional[dict]:
        issues = self.jira.fetch_board_issues(self._sprint_jql(project_key, sprint), "key,status,assignee")
        rows = self._finish_rows([self._row(issue) for issue in issues])

        load = {}
        avatars = {}
        for row in rows:
            load[row["assignee"]] = load.get(row["assignee"], 0) + 1
            if row.get("avatar_url"):
                avatars.setdefault(row["assignee"], row["avatar_url"])

        callout = imbalance_callout(load, self.digest_settings.load_imbalance_ratio)
        if callout:
            callout["avatar_url"] = avatars.get(callout["name"])
        return {
            "load_rows": [{"name": name, "total": load[name]} for name in sort_assignees(load)],
            "imbalance_callout": callout,
        }

    # -- digest -------------------------------------------------------------

    def _run_section(self, name: str, func, default, *args):
        try:
            return func(*args)
        except Exception as e:
            logger.warning(f"Retro section '{name}' failed: {e}")
            return default

    def get_retro(self) -> dict:
        """Everything the retro page shows for the last closed sprint.

        Raises:
            NoClosedSprintError: The board has no sprint that ended before now.
        """
        sprint = self.last_closed_sprint()
        project_key = self.project_key()
        logger.info(f"Building retro for sprint {sprint.get('name')} ({sprint.get('id')})")

        if project_key:
            sections = {
                "progress": (self.done_section, {"count": 0, "issues": [], "period_label": sprint.get("name")},
                             project_key, sprint),
                "incomplete": (self.incomplete_section, {"incomplete": [], "total": 0}, project_key, sprint),
                "backlog": (self.backlog_section, {"count": 0, "median_weeks": None, "note": None}, project_key),
                "high_priority": (self.high_priority_section, [], project_key, sprint),
                "stuck": (self.stuck_section, [], project_key, sprint),
                "load": (self.load_section, {"load_rows": [], "imbalance_callout": None}, project_key, sprint),
            }
        else:
            logger.warning("No project key for retro, Jira issue sections will be empty")
            sections = {}
        sections["creep"] = (self.retro_creep, None, sprint)
        sections["sweat"] = (self.retro_sweat, {"sprint_name": None, "rows": []}, sprint)
        sections["pr"] = (self.pr_section, None)

        with ThreadPoolExecutor(max_workers=len(sections)) as executor:
            futures = {
                name: executor.submit(self._run_section, name, func, default, *args)
                for name, (func, default, *args) in sections.items()
            }
            results = {name: future.result() for name, future in futures.items()}

        digest = {
            "sprint_name": sprint.get("name"),
            "period_label": sprint.get("name"),
            "generated_at": format_generated_at(self.now()),
            "progress": results.get("progress", {"count": 0, "issues": [], "period_label": sprint.get("name")}),
            "incomplete": results.get("incomplete", {"incomplete": [], "total": 0}),
            "backlog": results.get("backlog", {"count": 0, "median_weeks": None, "note": None}),
            "high_priority": results.get("high_priority", []),
            "creep": results["creep"],
            "sweat": results["sweat"],
            "pr": results["pr"],
            "stuck": results.get("stuck", []),
            "load": results.get("load", {"load_rows": [], "imbalance_callout": None}),
            "pr_open_days_threshold": self.digest_settings.pr_open_days_threshold,
        }
        digest["retro_notes"] = retro_notes(digest)
        return digest
