"""Pull request extraction and the GitHub open-PR report."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import Optional

from services.dates import fractional_days, parse_datetime
from services.errors import GitHubApiError
from services.formatters import format_pr_age, format_date_time
from services.github_client import GitHubClient
from services.pagination import chunked

logger = logging.getLogger(__name__)

TICKET_RE = re.compile(r"([A-Z]+)[-_]?(\d+)", re.IGNORECASE)
PR_NUMBER_RE = re.compile(r"/pull/(\d+)")
REPO_BATCH_SIZE = 10


def extract_pr_info(remote_links: Optional[list] = None, dev_info: Optional[list] = None) -> list:
    """Pull requests linked to a Jira issue.

    Dev-status details carry reviewer state and are preferred; remote links
    are only used when dev-status has no PRs.
    """
    prs = []
    for detail in dev_info or []:
        for pr in detail.get("pullRequests") or []:
            url = pr.get("url") or ""
            match = PR_NUMBER_RE.search(url)
            if not match:
                continue
            reviewers = pr.get("reviewers") or []
            approved = [r for r in reviewers if r.get("status") == "APPROVED"]
            completed = [r for r in reviewers if r.get("status") and r.get("status") not in ("PENDING", "REQUESTED")]
            prs.append({
                "url": url,
                "number": match.group(1),
                "title": pr.get("title") or f"PR #{match.group(1)}",
                "status": (pr.get("status") or "open").lower(),
                "needs_review": len(reviewers) > 0 and len(completed) < len(reviewers),
                "approved_count": len(approved),
                "reviewer_count": len(reviewers),
                "completed_review_count": len(completed),
            })

    if prs:
        return prs

    for link in remote_links or []:
        relationship = (link.get("relationship") or "").lower()
        obj = link.get("object") or {}
        url = obj.get("url") or ""
        if "pull" not in relationship and "pr" not in relationship:
            continue
        match = PR_NUMBER_RE.search(url)
        if not match:
            continue
        prs.append({
            "url": url,
            "number": match.group(1),
            "title": obj.get("title") or f"PR #{match.group(1)}",
            "status": "merged" if (link.get("status") or {}).get("resolved") else "open",
            "needs_review": False,
            "approved_count": 0,
            "reviewer_count": 0,
            "completed_review_count": 0,
        })
    return prs


def ticket_from_pr(title: str, branch: str) -> Optional[str]:
    """Jira key guessed from the PR title, else its branch name."""
    for text in (title or "", branch or ""):
        match = TICKET_RE.search(text)
        if match:
            return f"{match.group(1).upper()}-{match.group(2)}"
    return None


def reviewer_statuses(requested: dict, reviews: list) -> tuple:
    """Per-reviewer state from requested reviewers and submitted reviews.

    A reviewer starts as ``requested``. A review replaces a state-less entry;
    after that only approvals and change requests overwrite it.

    Returns:
        ``(statuses, avatars)`` keyed by reviewer login (or team slug).
    """
    statuses = {}
    avatars = {}

    for reviewer in (requested.get("users") or []) + (requested.get("teams") or []):
        name = reviewer.get("login") or reviewer.get("slug") or reviewer.get("name") or "Unknown"
        statuses.setdefault(name, {"status": "requested", "state": None})
        if reviewer.get("login") and reviewer.get("avatar_url"):
            avatars[reviewer["login"]] = reviewer["avatar_url"]

    for review in reviews or []:
        user = review.get("user") or {}
        name = user.get("login")
        if not name:
            continue
        state = (review.get("state") or "").lower()
        existing = statuses.get(name)
        if existing is None or existing["state"] is None or state in ("approved", "changes_requested"):
            statuses[name] = {"status": state, "state": state}
        if user.get("avatar_url"):
            avatars[name] = user["avatar_url"]

    return statuses, avatars


class PullRequestService:
    """Builds the open pull request report across an organisation."""

    def __init__(self, github: GitHubClient, tz=None):
        self.github = github
        self.tz = tz

    def _process_pr(self, repo: dict, pr: dict, now: datetime) -> dict:
        full_name = repo["full_name"]
        try:
            reviews = self.github.get_reviews(full_name, pr["number"])
        except GitHubApiError as e:
            logger.warning(f"Reviews unavailable for {full_name}#{pr['number']}: {e}")
            reviews = []
        try:
            requested = self.github.get_requested_reviewers(full_name, pr["number"])
        except GitHubApiError as e:
            logger.warning(f"Requested reviewers unavailable for {full_name}#{pr['number']}: {e}")
            requested = {"users": [], "teams": []}

        statuses, avatars = reviewer_statuses(requested, reviews)
        user = pr.get("user") or {}
        created = parse_datetime(pr.get("created_at"))
        updated = parse_datetime(pr.get("updated_at")) or created
        age_days = fractional_days(now, created) if created else 0

        return {
            "number": pr["number"],
            "title": pr.get("title", ""),
            "author": user.get("login"),
            "author_avatar_url": user.get("avatar_url"),
            "repo": repo.get("name"),
            "repo_full_name": full_name,
            "url": pr.get("html_url"),
            "branch": (pr.get("head") or {}).get("ref"),
            "ticket": ticket_from_pr(pr.get("title"), (pr.get("head") or {}).get("ref")),
            "is_draft": bool(pr.get("draft")),
            "created_at": created,
            "updated_at": updated,
            "updated_text": format_date_time(updated.astimezone(self.tz)) if updated and self.tz else None,
            "age_days": age_days,
            "age_text": format_pr_age(age_days),
            "reviewer_statuses": statuses,
            "reviewer_avatars": avatars,
            "has_reviewers": bool(statuses),
        }

    def _repo_pull_requests(self, repo: dict, now: datetime) -> list:
        pulls = self.github.list_pull_requests(repo["full_name"])
        logger.debug(f"{repo['full_name']}: {len(pulls)} open PRs")
        return [self._process_pr(repo, pr, now) for pr in pulls]

    def collect(self, now: datetime, max_repos: Optional[int] = None) -> list:
        """Open PRs across the org, most recently updated first.

        Repositories are processed ten at a time; a repository that fails is
        logged and skipped.
        """
        repos = self.github.list_repositories()
        if max_repos is not None:
            repos = repos[:max_repos]
        logger.info(f"Collecting open PRs from {len(repos)} repositories in {self.github.org}")

        prs = []
        for batch in chunked(repos, REPO_BATCH_SIZE):
            with ThreadPoolExecutor(max_workers=REPO_BATCH_SIZE) as executor:
                futures = {executor.submit(self._repo_pull_requests, repo, now): repo for repo in batch}
                for future in as_completed(futures):
                    repo = futures[future]
                    try:
                        prs.extend(future.result())
                    except Exception as e:
                        logger.error(f"Error fetching PRs from {repo.get('full_name')}: {e}")

        prs.sort(key=lambda p: p["updated_at"] or now, reverse=True)
        return prs

    def get_pr_report(self, now: datetime) -> dict:
        prs = self.collect(now)
        return {
            "org": self.github.org,
            "prs": prs,
            "total": len(prs),
            "drafts": sum(1 for p in prs if p["is_draft"]),
            "without_reviewers": sum(1 for p in prs if not p["is_draft"] and not p["has_reviewers"]),
            "rate_limit": self.github.get_rate_limit(),
        }

    def get_retro_summary(self, now: datetime, open_days_threshold: int = 5, max_repos: int = 15) -> dict:
        """Counts for the retro: long-idle PRs and PRs nobody was asked to review.

        Only reads the pull request listings, so reviewer state comes from
        ``requested_reviewers``/``requested_teams`` on each PR.
        """
        repos = [r for r in self.github.list_repositories() if not r.get("archived")][:max_repos]
        cutoff = now - timedelta(days=open_days_threshold)

        total = stale = no_reviewers = 0
        for repo in repos:
            try:
                pulls = self.github.list_pull_requests(repo["full_name"])
            except GitHubApiError as e:
                logger.warning(f"Skipping {repo['full_name']} in retro PR summary: {e}")
                continue
            for pr in pulls:
                total += 1
                updated = parse_datetime(pr.get("updated_at"))
                if updated and updated < cutoff:
                    stale += 1
                if not pr.get("draft") and not (pr.get("requested_reviewers") or pr.get("requested_teams")):
                    no_reviewers += 1

        return {
            "total": total,
            "stale_count": stale,
            "no_reviewer_count": no_reviewers,
            "open_days_threshold": open_days_threshold,
        }
