"""Sprint-level reports built on the GreenHopper sprint report: creep and sweat."""

import logging
import re
from collections import namedtuple
from datetime import timedelta
from typing import Optional

from services.aggregators import completion_pct, creep_metrics, sweat_pivot, tally_completion
from services.dates import parse_datetime
from services.errors import JiraApiError
from services.formatters import (
    first_name,
    format_date_range,
    format_long_date,
    status_rank,
    status_slug,
)
from services.identity_cache import UNASSIGNED, is_account_id
from services.reporting import ReportService

logger = logging.getLogger(__name__)

SPRINT_HISTORY = 12
IGNORED_NAME_RE = re.compile(r"^rk:", re.IGNORECASE)

SprintReportLists = namedtuple("SprintReportLists", ["completed", "incomplete", "punted", "added_keys"])


def entry_key(entry) -> str:
    """Issue key of a sprint report entry, which may be an object or a bare key."""
    if isinstance(entry, dict):
        return str(entry.get("key") or entry.get("id") or "")
    return str(entry) if entry is not None else ""


def split_sprint_report(contents: Optional[dict]) -> SprintReportLists:
    """Completed, incomplete and punted entries plus the keys added mid-sprint."""
    contents = contents if isinstance(contents, dict) else {}

    def as_list(value):
        return value if isinstance(value, list) else []

    incomplete = contents.get("incompletedIssues")
    if not isinstance(incomplete, list):
        incomplete = contents.get("issuesNotCompletedInCurrentSprint")

    added = contents.get("issueKeysAddedDuringSprint") or {}
    added_keys = added if isinstance(added, list) else list(added.keys()) if isinstance(added, dict) else []
    added_keys = [k for k in (entry_key(k) for k in added_keys) if k]

    return SprintReportLists(
        as_list(contents.get("completedIssues")),
        as_list(incomplete),
        as_list(contents.get("puntedIssues")),
        list(dict.fromkeys(added_keys)),
    )


def entry_fields(entry) -> dict:
    if not isinstance(entry, dict):
        return {}
    fields = entry.get("fields")
    return fields if isinstance(fields, dict) else entry


def entry_status(entry) -> str:
    status = entry_fields(entry).get("status")
    if isinstance(status, dict):
        status = status.get("name")
    return str(status or "—")


class SprintReportService(ReportService):
    """Scope creep and per-contributor completion across recent sprints."""

    def select_sprints(self) -> list:
        """Active sprint (if now falls inside it) followed by the last closed sprints.

        Returns:
            List of ``(sprint, is_active)`` pairs, newest first.
        """
        now = self.now()
        sprints = self.jira.get_sprints(state="active,closed")

        closed = [s for s in sprints if (s.get("state") or "").lower() == "closed"
                  and s.get("startDate") and s.get("endDate")]
        closed.sort(key=lambda s: parse_datetime(s["endDate"]), reverse=True)
        closed = closed[:SPRINT_HISTORY]

        active = None
        for sprint in sprints:
            if (sprint.get("state") or "").lower() != "active":
                continue
            start = parse_datetime(sprint.get("startDate"))
            end = parse_datetime(sprint.get("endDate"))
            if start and end and start <= now <= end:
                active = sprint
                break

        selected = [(active, True)] if active else []
        return selected + [(sprint, False) for sprint in closed]

    def sprint_report(self, sprint_id) -> Optional[SprintReportLists]:
        try:
            return split_sprint_report(self.jira.get_sprint_report(sprint_id))
        except JiraApiError as e:
            logger.warning(f"Sprint report failed for sprint {sprint_id}: {e}")
            return None

    def _report_issue(self, entry) -> dict:
        fields = entry_fields(entry)
        raw_assignee = fields.get("assignee")
        if isinstance(raw_assignee, dict):
            self.identity_cache.seed_from_jira_user(raw_assignee)
            assignee = raw_assignee.get("displayName") or UNASSIGNED
        else:
            assignee = raw_assignee or UNASSIGNED
        key = entry_key(entry)
        return {
            "key": key,
            "summary": str(fields.get("summary") or ""),
            "status": entry_status(entry),
            "assignee": assignee,
            "avatar_url": None,
            "link": self.browse_url(key),
        }

    def _resolve_rows(self, rows: list):
        resolved = self.resolve_assignees({row["key"]: row["assignee"] for row in rows})
        self.apply_resolved(rows, resolved)
        return resolved

    # -- /creep -------------------------------------------------------------

    def creep_row(self, sprint: dict, is_active: bool) -> dict:
        start = self.local(sprint.get("startDate"))
        end = self.local(sprint.get("endDate"))
        display_start = start + timedelta(days=1) if start else None

        row = {
            "id": sprint.get("id"),
            "name": sprint.get("name"),
            "is_active": is_active,
            "date_range": format_date_range(display_start, end),
            "start_date": format_long_date(display_start),
            "end_date": format_long_date(end),
            "issues": [],
            "from_report_api": False,
        }

        lists = self.sprint_report(sprint.get("id"))
        if lists is None:
            row.update(creep_metrics(0, 0, 0, 0))
            return row

        ended_with = len(lists.completed) + len(lists.incomplete)
        row.update(creep_metrics(ended_with, len(lists.added_keys), len(lists.punted), len(lists.completed)))

        punted_keys = {entry_key(e) for e in lists.punted}
        added_keys = set(lists.added_keys)
        entries = lists.completed + lists.incomplete + lists.punted + [{"key": k} for k in lists.added_keys]

        seen = set()
        for entry in entries:
            issue = self._report_issue(entry)
            if not issue["key"] or issue["key"] in seen:
                continue
            seen.add(issue["key"])
            issue["status_slug"] = status_slug(issue["status"])
            if issue["key"] in punted_keys:
                issue["sprint_change"] = "removed"
            elif issue["key"] in added_keys:
                issue["sprint_change"] = "added"
            else:
                issue["sprint_change"] = None
            row["issues"].append(issue)

        row["from_report_api"] = True
        return row

    def get_creep_report(self) -> dict:
        """Scope change per sprint for the active and last twelve closed sprints."""
        rows = [self.creep_row(sprint, is_active) for sprint, is_active in self.select_sprints()]

        self._resolve_rows([issue for row in rows for issue in row["issues"]])
        for row in rows:
            row["issues"].sort(key=lambda i: (status_rank(i["status"]), i["assignee"] or "", i["key"]))

        return {
            "sprint_rows": rows,
            "total_sprint_rows": len(rows),
            "report_api_used_count": sum(1 for row in rows if row["from_report_api"]),
        }

    # -- /sweat -------------------------------------------------------------

    def sweat_issues(self, sprint_id) -> list:
        lists = self.sprint_report(sprint_id)
        if lists is None:
            return []
        rows = [self._report_issue(e) for e in lists.completed + lists.incomplete + lists.punted]
        rows += [{"key": key, "assignee": UNASSIGNED, "status": "—", "avatar_url": None} for key in lists.added_keys]

        seen = set()
        deduped = []
        for row in rows:
            if row["key"] and row["key"] not in seen:
                seen.add(row["key"])
                deduped.append(row)
        return deduped

    @staticmethod
    def is_ignored(raw: str, display: str) -> bool:
        """Skip ``rk:`` ids, ids that never resolved to a name, and Unassigned."""
        if IGNORED_NAME_RE.match(display or ""):
            return True
        if is_account_id(raw) and display == raw:
            return True
        return display == UNASSIGNED

    def get_sweat_report(self) -> dict:
        """Assigned vs completed per contributor, one column per sprint."""
        sprints = []
        sprint_issues = []
        for sprint, is_active in self.select_sprints():
            sprints.append({
                "id": sprint.get("id"),
                "name": sprint.get("name"),
                "is_active": is_active,
                "date_range": format_date_range(self.local(sprint.get("startDate")), self.local(sprint.get("endDate"))),
            })
            sprint_issues.append(self.sweat_issues(sprint.get("id")))

        all_rows = [row for rows in sprint_issues for row in rows]
        raw_by_key = {row["key"]: row["assignee"] for row in all_rows}
        self._resolve_rows(all_rows)

        avatars = {}
        tallies = []
        names = set()
        for rows in sprint_issues:
            kept = []
            for row in rows:
                if self.is_ignored(raw_by_key.get(row["key"]), row["assignee"]):
                    continue
                kept.append(row)
                names.add(row["assignee"])
                if row.get("avatar_url"):
                    avatars.setdefault(row["assignee"], row["avatar_url"])
            tallies.append(tally_completion(kept))

        ordered = sorted(names, key=lambda n: n.lower())
        assignee_rows = sweat_pivot(tallies, ordered)
        for row in assignee_rows:
            row["assignee_short"] = first_name(row["assignee"])
            row["avatar_url"] = avatars.get(row["assignee"])

        return {"sprints": sprints, "assignee_rows": assignee_rows}

    # -- retro helpers ------------------------------------------------------

    def retro_creep(self, sprint: dict) -> Optional[dict]:
        """Started/ended split by whether issues were planned or added mid-sprint."""
        lists = self.sprint_report(sprint.get("id"))
        if lists is None:
            return None

        added = set(lists.added_keys)
        completed = len(lists.completed)
        incomplete = len(lists.incomplete)
        ended_with = completed + incomplete
        metrics = creep_metrics(ended_with, len(added), len(lists.punted), completed)
        completed_from_start = sum(1 for e in lists.completed if entry_key(e) not in added)
        incomplete_from_added = sum(1 for e in lists.incomplete if entry_key(e) in added)

        return {
            "sprint_name": sprint.get("name"),
            "started_with": metrics["started_with"],
            "ended_with": ended_with,
            "completed": completed,
            "incomplete": incomplete,
            "completed_from_start": completed_from_start,
            "completed_from_added": completed - completed_from_start,
            "incomplete_from_start": incomplete - incomplete_from_added,
            "incomplete_from_added": incomplete_from_added,
            "added_count": len(added),
            "removed_count": len(lists.punted),
            "creep_net": len(added) - len(lists.punted),
            "pct_complete_ended": completion_pct(completed, ended_with, precision=0) or 0,
            "pct_complete_started": completion_pct(completed_from_start, metrics["started_with"], precision=0) or 0,
        }

    def retro_sweat(self, sprint: dict) -> dict:
        """Assigned vs completed per person for one sprint, with the completion gap."""
        lists = self.sprint_report(sprint.get("id"))
        if lists is None:
            return {"sprint_name": None, "rows": []}

        rows = [self._report_issue(e) for e in lists.completed + lists.incomplete]
        self._resolve_rows(rows)

        avatars = {}
        for row in rows:
            if row.get("avatar_url"):
                avatars.setdefault(row["assignee"], row["avatar_url"])

        sweat = []
        for name, record in tally_completion(rows).items():
            if name == UNASSIGNED:
                continue
            assigned, done = record["assigned"], record["completed"]
            sweat.append({
                "assignee": name,
                "assignee_short": first_name(name),
                "avatar_url": avatars.get(name),
                "assigned": assigned,
                "completed": done,
                "gap_pct": round((1 - done / assigned) * 100) if assigned else 0,
            })
        sweat.sort(key=lambda r: r["assignee"])
        return {"sprint_name": sprint.get("name"), "rows": sweat}
