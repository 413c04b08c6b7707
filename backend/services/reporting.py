"""Shared plumbing for the Jira-backed reports."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Optional

from services.changelog import SprintRef, latest_sprint
from services.config import Settings
from services.dates import parse_datetime, whole_days
from services.errors import JiraApiError
from services.identity_cache import UNASSIGNED, IdentityCache, avatar_from_user, is_account_id
from services.jira_client import JiraClient
from services.pagination import chunked

logger = logging.getLogger(__name__)

DEFAULT_SPRINT_DAYS = 14
ASSIGNEE_BATCH_SIZE = 50


def stuck_badge(days: int, sprint_days: int) -> str:
    """``danger`` past two sprints, ``warning`` past one, otherwise empty."""
    if days >= sprint_days * 2:
        return "danger"
    if days >= sprint_days:
        return "warning"
    return ""


def priority_level(priority_name) -> str:
    """H/M/L for a Jira priority name."""
    if not priority_name or not isinstance(priority_name, str):
        return "M"
    name = priority_name.lower()
    if "high" in name and "low" not in name:
        return "H"
    if "low" in name:
        return "L"
    return "M"


class ReportService:
    """Base for report builders: Jira client, settings and identity cache."""

    def __init__(self, jira: JiraClient, settings: Settings,
                 identity_cache: Optional[IdentityCache] = None, now: Optional[datetime] = None):
        self.jira = jira
        self.settings = settings
        self.identity_cache = identity_cache if identity_cache is not None else IdentityCache()
        self.tz = settings.timezone
        self._now = now
        self._sprint_cache = {}

    def now(self) -> datetime:
        if self._now is not None:
            return self._now.astimezone(self.tz)
        return datetime.now(self.tz)

    def browse_url(self, issue_key: str) -> str:
        return self.settings.browse_url(issue_key)

    def local(self, value) -> Optional[datetime]:
        parsed = parse_datetime(value, self.tz)
        return parsed.astimezone(self.tz) if parsed else None

    # -- sprints ------------------------------------------------------------

    def sprint_days(self, sprint: Optional[dict]) -> int:
        """Sprint length in whole days, 14 when the sprint has no dates."""
        if not sprint:
            return DEFAULT_SPRINT_DAYS
        start = parse_datetime(sprint.get("startDate"))
        end = parse_datetime(sprint.get("endDate"))
        if not start or not end:
            return DEFAULT_SPRINT_DAYS
        return whole_days(end, start) or DEFAULT_SPRINT_DAYS

    def active_sprint(self) -> Optional[dict]:
        try:
            sprints = self.jira.get_sprints(state="active")
        except JiraApiError as e:
            logger.warning(f"Could not read active sprint: {e}")
            return None
        return sprints[0] if sprints else None

    def complete_sprints(self, sprints: list) -> list:
        """Fill in missing names and dates by fetching sprint details.

        Lookups run in parallel and are cached for the life of this service;
        a sprint that cannot be fetched keeps what the issue had.
        """
        missing = [s.id for s in sprints if s.id is not None and s.id not in self._sprint_cache
                   and not (s.name and (s.end_date or s.start_date))]

        def fetch(sprint_id):
            try:
                return sprint_id, self.jira.get_sprint(sprint_id)
            except JiraApiError as e:
                logger.debug(f"Sprint {sprint_id} unavailable: {e}")
                return sprint_id, None

        if missing:
            with ThreadPoolExecutor(max_workers=6) as executor:
                futures = [executor.submit(fetch, sprint_id) for sprint_id in set(missing)]
                for future in as_completed(futures):
                    sprint_id, data = future.result()
                    self._sprint_cache[sprint_id] = data

        completed = []
        for sprint in sprints:
            data = self._sprint_cache.get(sprint.id)
            if data:
                sprint = SprintRef(data.get("id", sprint.id), data.get("name") or sprint.name,
                                   data.get("state") or sprint.state,
                                   data.get("startDate") or sprint.start_date,
                                   data.get("endDate") or sprint.end_date)
            completed.append(sprint)
        return completed

    def latest_sprint_for(self, sprints: list) -> Optional[SprintRef]:
        """Latest sprint by end date, else start date, for display."""
        sprints = self.complete_sprints(sprints)
        found = latest_sprint(sprints)
        if found is None:
            started = [s for s in sprints if parse_datetime(s.start_date)]
            if started:
                found = max(started, key=lambda s: parse_datetime(s.start_date))
        return found

    # -- per-issue extras ---------------------------------------------------

    def fetch_issue_extras(self, issues: list, links: bool = False, max_workers: int = 10) -> dict:
        """Changelog (and optionally remote links and dev-status PRs) per issue.

        Every fetch degrades to an empty list on failure.
        """
        def fetch(issue):
            key = issue["key"]
            extras = {"changelog": [], "remote_links": [], "dev_info": []}
            try:
                extras["changelog"] = self.jira.get_issue_changelog(key)
            except JiraApiError as e:
                logger.warning(f"Changelog unavailable for {key}: {e}")
            if links:
                try:
                    extras["remote_links"] = self.jira.get_remote_links(key)
                except JiraApiError as e:
                    logger.debug(f"Remote links unavailable for {key}: {e}")
                try:
                    extras["dev_info"] = self.jira.get_dev_status(issue.get("id"))
                except JiraApiError as e:
                    logger.debug(f"Dev status unavailable for {key}: {e}")
            return key, extras

        results = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(fetch, issue): issue["key"] for issue in issues}
            for future in as_completed(futures):
                key, extras = future.result()
                results[key] = extras
        return results

    # -- assignees ----------------------------------------------------------

    def assignee_of(self, user) -> tuple:
        return self.identity_cache.display_for(user)

    def resolve_assignees(self, assignee_by_issue: dict) -> dict:
        """Resolve raw assignee ids to ``{"displayName", "avatarUrl"}``.

        Tries the identity cache, then re-reads the issues' assignee fields in
        batches of 50, then the user endpoints. Keys that already look like
        names are left alone.

        Args:
            assignee_by_issue: Issue key -> assignee key as shown in the report.

        Returns:
            Assignee key -> resolved entry, for every id-like key.
        """
        pending = {key: value for key, value in assignee_by_issue.items() if is_account_id(value)}
        resolved = {}
        for value in set(pending.values()):
            hit = self.identity_cache.get(value)
            if hit:
                resolved[value] = hit

        to_fetch = [key for key, value in pending.items() if value not in resolved]
        for batch in chunked(to_fetch, ASSIGNEE_BATCH_SIZE):
            try:
                data = self.jira.search_issues(f"key in ({','.join(batch)})", ["assignee"], max_results=len(batch))
            except JiraApiError as e:
                logger.warning(f"Assignee lookup by issue failed: {e}")
                continue
            for issue in data.get("issues", []):
                value = pending.get(issue.get("key"))
                assignee = (issue.get("fields") or {}).get("assignee")
                if not value or not assignee:
                    continue
                if self.identity_cache.seed_from_jira_user(assignee):
                    entry = {
                        "displayName": str(assignee.get("displayName") or assignee.get("name")).strip(),
                        "avatarUrl": avatar_from_user(assignee),
                    }
                    self.identity_cache.set(value, entry)
                    resolved[value] = entry

        still_needed = {value for value in pending.values() if value not in resolved}
        if still_needed:
            with ThreadPoolExecutor(max_workers=6) as executor:
                futures = {executor.submit(self.identity_cache.resolve, value, self.jira): value
                           for value in still_needed}
                for future in as_completed(futures):
                    resolved[futures[future]] = future.result()

        return resolved

    def apply_resolved(self, rows: list, resolved: dict, field: str = "assignee"):
        """Swap raw ids in ``rows[field]`` for resolved display names."""
        for row in rows:
            entry = resolved.get(row.get(field))
            if entry:
                row[field] = entry["displayName"]
                row["avatar_url"] = entry.get("avatarUrl") or row.get("avatar_url")

    def project_key(self) -> Optional[str]:
        return self.jira.get_project_key()


__all__ = ["ReportService", "stuck_badge", "priority_level", "UNASSIGNED", "DEFAULT_SPRINT_DAYS"]
