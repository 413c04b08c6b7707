"""GitHub REST API client for the pull request reports."""

import logging
from typing import Optional

import requests

from services.config import Settings
from services.errors import GitHubApiError
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
PAGE_SIZE = 100


class GitHubClient:
    """Reads repositories, open pull requests and their reviews for one org."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None, base_url: str = GITHUB_API):
        self.org = settings.github_org
        self.token = settings.github_token
        self.base_url = base_url.rstrip("/")
        self.timeout = settings.api_timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.max_retries, base_delay=settings.retry_delay
        )

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "team-health-dashboard",
        })
        if self.token:
            self.session.headers["Authorization"] = f"token {self.token}"

    def is_configured(self) -> bool:
        return bool(self.token and self.org)

    def _request(self, endpoint: str, params: Optional[dict] = None):
        url = f"{self.base_url}{endpoint}"

        def send():
            return self.session.get(url, params=params, timeout=self.timeout)

        try:
            response = self.retry_policy.call(send, description=f"GitHub GET {endpoint}")
        except requests.RequestException as e:
            raise GitHubApiError(f"GitHub request failed: GET {endpoint}: {e}") from e

        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining is not None:
            logger.debug(f"GitHub {endpoint}: rate limit remaining {remaining}")

        if response.status_code == 429 or (response.status_code == 403 and remaining == "0"):
            reset = response.headers.get("x-ratelimit-reset") or response.headers.get("retry-after", "unknown")
            raise GitHubApiError(f"GitHub rate limit exceeded (reset: {reset})", status_code=response.status_code)
        if response.status_code >= 400:
            raise GitHubApiError(
                f"GitHub API request failed: GET {endpoint} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    def _paged(self, endpoint: str, params: Optional[dict] = None) -> list:
        """GitHub pages by page number; a short page is the last one."""
        items = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"per_page": PAGE_SIZE, "page": page})
            batch = self._request(endpoint, query) or []
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return items

    def list_repositories(self) -> list:
        return self._paged(f"/orgs/{self.org}/repos", {"type": "all", "sort": "updated"})

    def list_pull_requests(self, repo_full_name: str, state: str = "open") -> list:
        return self._paged(
            f"/repos/{repo_full_name}/pulls",
            {"state": state, "sort": "updated", "direction": "desc"},
        )

    def get_reviews(self, repo_full_name: str, number: int) -> list:
        return self._request(f"/repos/{repo_full_name}/pulls/{number}/reviews") or []

    def get_requested_reviewers(self, repo_full_name: str, number: int) -> dict:
        return self._request(f"/repos/{repo_full_name}/pulls/{number}/requested_reviewers") or {}

    def get_rate_limit(self) -> Optional[dict]:
        try:
            data = self._request("/rate_limit")
        except GitHubApiError as e:
            logger.warning(f"Could not read GitHub rate limit: {e}")
            return None
        rate = data.get("rate", {})
        return {"remaining": rate.get("remaining"), "limit": rate.get("limit"), "reset": rate.get("reset")}
