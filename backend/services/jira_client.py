"""Jira REST and Agile API client."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

import requests

from services.config import Settings
from services.errors import JiraApiError
from services.pagination import chunked, paginate
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DETAIL_BATCH_SIZE = 100
DEFAULT_SPRINT_FIELD = "customfield_10020"


class JiraClient:
    """Thin client over the Jira endpoints the reports read from."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.settings = settings
        self.server = settings.jira_base_url
        self.board_id = settings.board_id
        self.timeout = settings.api_timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.max_retries, base_delay=settings.retry_delay
        )

        self.session = session or requests.Session()
        self.session.auth = (settings.jira_email, settings.jira_api_token)
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        self._sprint_field_cache = None
        self._status_names_cache = None
        self._project_key_cache = None

    def _request(self, endpoint: str, params: Optional[dict] = None,
                 method: str = "GET", json: Optional[dict] = None):
        """Make an authenticated request, retrying transient failures."""
        url = f"{self.server}{endpoint}"

        def send():
            return self.session.request(method, url, params=params, json=json, timeout=self.timeout)

        try:
            response = self.retry_policy.call(send, description=f"Jira {method} {endpoint}")
        except requests.RequestException as e:
            raise JiraApiError(f"Jira request failed: {method} {endpoint}: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after", "unknown")
            raise JiraApiError(
                f"Jira rate limit exceeded. Retry after {retry_after} seconds.",
                status_code=429,
            )
        if response.status_code >= 400:
            raise JiraApiError(
                f"Jira API request failed: {method} {endpoint} returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise JiraApiError(f"Jira returned invalid JSON: {method} {endpoint}") from e

    def get(self, endpoint: str, params: Optional[dict] = None):
        return self._request(endpoint, params=params)

    # -- boards and sprints -------------------------------------------------

    def get_board(self) -> dict:
        return self._request(f"/rest/agile/1.0/board/{self.board_id}")

    def get_board_configuration(self) -> dict:
        return self._request(f"/rest/agile/1.0/board/{self.board_id}/configuration")

    def get_project_key(self) -> Optional[str]:
        """Project key from the board location, else from a sample issue key."""
        if self._project_key_cache:
            return self._project_key_cache

        try:
            board = self.get_board()
            key = (board.get("location") or {}).get("projectKey")
            if key:
                self._project_key_cache = key
                return key
        except JiraApiError as e:
            logger.warning(f"Could not read project key from board {self.board_id}: {e}")

        try:
            data = self._request(
                f"/rest/agile/1.0/board/{self.board_id}/issue",
                params={"fields": "key", "maxResults": 1},
            )
            issues = data.get("issues", [])
            if issues:
                self._project_key_cache = issues[0]["key"].split("-")[0]
                return self._project_key_cache
        except JiraApiError as e:
            logger.warning(f"Could not read a sample issue from board {self.board_id}: {e}")

        return None

    def get_sprints(self, state: str = "active,closed,future", max_results: int = 50) -> list:
        """All sprints on the board in the given states."""
        def fetch_page(start_at, page_size):
            return self._request(
                f"/rest/agile/1.0/board/{self.board_id}/sprint",
                params={"state": state, "startAt": start_at, "maxResults": page_size},
            )

        return paginate(fetch_page, lambda page: page.get("values", []), page_size=max_results)

    def get_sprint(self, sprint_id) -> dict:
        return self._request(f"/rest/agile/1.0/sprint/{sprint_id}")

    def get_sprint_issues(self, sprint_id, fields: str = "key") -> list:
        def fetch_page(start_at, page_size):
            return self._request(
                f"/rest/agile/1.0/sprint/{sprint_id}/issue",
                params={"fields": fields, "startAt": start_at, "maxResults": page_size},
            )

        return paginate(fetch_page, lambda page: page.get("issues", []), lambda page: page.get("total"))

    def get_sprint_report(self, sprint_id) -> dict:
        """GreenHopper sprint report contents for a sprint."""
        data = self._request(
            "/rest/greenhopper/1.0/rapid/charts/sprintreport",
            params={"rapidViewId": self.board_id, "sprintId": sprint_id},
        )
        if isinstance(data, dict) and isinstance(data.get("contents"), dict):
            return data["contents"]
        return data or {}

    # -- issue search -------------------------------------------------------

    def get_board_issues(self, jql: str, fields="key", start_at: int = 0, max_results: int = 100) -> dict:
        if isinstance(fields, (list, tuple)):
            fields = ",".join(fields)
        return self._request(
            f"/rest/agile/1.0/board/{self.board_id}/issue",
            params={"jql": jql, "fields": fields, "startAt": start_at, "maxResults": max_results},
        )

    def search_issues(self, jql: str, fields=("key",), start_at: int = 0, max_results: int = 100) -> dict:
        if isinstance(fields, str):
            fields = fields.split(",")
        return self._request(
            "/rest/api/3/search/jql",
            method="POST",
            json={"jql": jql, "fields": list(fields), "startAt": start_at, "maxResults": max_results},
        )

    def fetch_board_issues(self, jql: str, fields="key") -> list:
        """Every board issue matching ``jql``."""
        return paginate(
            lambda start_at, size: self.get_board_issues(jql, fields, start_at, size),
            lambda page: page.get("issues", []),
            lambda page: page.get("total"),
        )

    def search_all(self, jql: str, fields=("key",)) -> list:
        """Every issue matching ``jql`` through the platform search."""
        return paginate(
            lambda start_at, size: self.search_issues(jql, fields, start_at, size),
            lambda page: page.get("issues", []),
            lambda page: page.get("total"),
        )

    def find_issues(self, jql: str, fields="key") -> list:
        """Board-scoped search, falling back to the platform search on failure."""
        try:
            return self.fetch_board_issues(jql, fields)
        except JiraApiError as e:
            logger.warning(f"Board issue search failed ({e}), falling back to /search/jql")
            if isinstance(fields, str):
                fields = fields.split(",")
            return self.search_all(jql, fields)

    def fetch_issue_details(self, keys, fields) -> list:
        """Full issue documents for ``keys``, fetched in batches of at most 100.

        A batch that fails is logged and dropped.
        """
        keys = [k for k in dict.fromkeys(keys) if k]
        if not keys:
            return []

        issues = []
        for batch in chunked(keys, DETAIL_BATCH_SIZE):
            jql = f"key in ({','.join(batch)})"
            try:
                data = self.search_issues(jql, fields, max_results=len(batch))
                issues.extend(data.get("issues", []))
            except JiraApiError as e:
                logger.warning(f"Detail batch of {len(batch)} issues failed, skipping: {e}")
        return issues

    # -- per-issue extras ---------------------------------------------------

    def get_issue_changelog(self, issue_key: str) -> list:
        """All changelog records for an issue."""
        def fetch_page(start_at, page_size):
            return self._request(
                f"/rest/api/3/issue/{issue_key}/changelog",
                params={"startAt": start_at, "maxResults": page_size},
            )

        return paginate(
            fetch_page,
            lambda page: page.get("values", []),
            lambda page: page.get("total"),
        )

    def get_remote_links(self, issue_key: str) -> list:
        data = self._request(f"/rest/api/3/issue/{issue_key}/remotelink")
        return data if isinstance(data, list) else []

    def get_dev_status(self, issue_id) -> list:
        data = self._request(
            "/rest/dev-status/latest/issue/detail",
            params={"issueId": issue_id, "applicationType": "GitHub", "dataType": "pullrequest"},
        )
        return data.get("detail", []) if isinstance(data, dict) else []

    def fetch_changelogs(self, issue_keys, max_workers: int = 10) -> dict:
        """Changelogs for many issues in parallel. A failed fetch yields ``[]``."""
        results = {}

        def fetch(issue_key):
            try:
                return issue_key, self.get_issue_changelog(issue_key)
            except JiraApiError as e:
                logger.warning(f"Changelog fetch failed for {issue_key}: {e}")
                return issue_key, []

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(fetch, key): key for key in issue_keys}
            for future in as_completed(futures):
                issue_key, histories = future.result()
                results[issue_key] = histories

        return results

    # -- metadata -----------------------------------------------------------

    def get_sprint_field_id(self) -> str:
        """Id of the Sprint custom field, found through field metadata."""
        if self._sprint_field_cache is not None:
            return self._sprint_field_cache

        field_id = DEFAULT_SPRINT_FIELD
        try:
            for field in self._request("/rest/api/3/field"):
                schema = field.get("schema") or {}
                if field.get("name") == "Sprint" or schema.get("custom", "").endswith(":gh-sprint"):
                    field_id = field.get("id", field_id)
                    break
        except JiraApiError as e:
            logger.warning(f"Field metadata unavailable, assuming {DEFAULT_SPRINT_FIELD}: {e}")

        self._sprint_field_cache = field_id
        return field_id

    def get_status_names(self) -> dict:
        """Map of status id to status name."""
        if self._status_names_cache is not None:
            return self._status_names_cache

        names = {}
        try:
            for status in self._request("/rest/api/3/status"):
                names[str(status.get("id"))] = status.get("name", "")
        except JiraApiError as e:
            logger.warning(f"Status metadata unavailable: {e}")

        self._status_names_cache = names
        return names

    # -- users --------------------------------------------------------------

    def lookup_user(self, account_id: str) -> Optional[dict]:
        """Try each user endpoint in turn; the first HTTP 200 wins."""
        attempts = (
            ("/rest/api/3/user", {"accountId": account_id}, False),
            ("/rest/api/3/user/bulk", {"accountId": [account_id]}, True),
            ("/rest/api/2/user", {"accountId": account_id}, False),
            ("/rest/api/2/user", {"username": account_id}, False),
        )
        for endpoint, params, is_bulk in attempts:
            try:
                data = self._request(endpoint, params=params)
            except JiraApiError:
                continue
            user = (data.get("values") or [None])[0] if is_bulk else data
            if user:
                return user
        return None
