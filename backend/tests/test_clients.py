"""Tests for pagination, retry and the Jira/GitHub clients."""

import pytest
import requests
from unittest.mock import Mock, patch

from services.errors import GitHubApiError, JiraApiError
from services.github_client import GitHubClient
from services.jira_client import JiraClient
from services.pagination import chunked, paginate
from services.retry import RetryPolicy, is_retryable


def make_response(status_code=200, payload=None, headers=None):
    return Mock(status_code=status_code, json=lambda: payload, headers=headers or {})


def no_wait_policy():
    return RetryPolicy(max_retries=3, base_delay=1.0, sleep=Mock())


class TestPaginate:
    """Test the shared offset paginator."""

    def test_250_items_take_three_requests(self):
        """Pages of 100 over 250 items should stop after the third page."""
        data = [{"key": f"PROJ-{i}"} for i in range(250)]
        fetch_page = Mock(side_effect=lambda start, size: {"issues": data[start:start + size], "total": 250})

        items = paginate(fetch_page, lambda p: p["issues"], lambda p: p["total"])

        assert fetch_page.call_count == 3
        assert len({i["key"] for i in items}) == 250

    def test_empty_page_stops_loop(self):
        """A server that reports more items than it returns should not loop forever."""
        fetch_page = Mock(return_value={"issues": [], "total": 500})

        assert paginate(fetch_page, lambda p: p["issues"], lambda p: p["total"]) == []
        assert fetch_page.call_count == 1

    def test_short_page_without_total(self):
        """Without a total, a short page is the last one."""
        pages = [{"values": list(range(50))}, {"values": list(range(10))}]
        fetch_page = Mock(side_effect=pages)

        items = paginate(fetch_page, lambda p: p["values"], page_size=50)

        assert len(items) == 60
        assert fetch_page.call_count == 2

    def test_is_last_flag(self):
        """``isLast`` ends the loop when no total is given."""
        fetch_page = Mock(return_value={"values": [1, 2], "isLast": True})

        assert paginate(fetch_page, lambda p: p["values"], page_size=2) == [1, 2]
        assert fetch_page.call_count == 1

    def test_chunked(self):
        """Should split into lists of at most ``size``."""
        assert [len(c) for c in chunked(range(250), 100)] == [100, 100, 50]


class TestRetryPolicy:
    """Test exponential backoff."""

    def test_delays_double(self):
        """Delays should be 1s, 2s, 4s."""
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_retries_5xx_then_succeeds(self):
        """A 503 is retried until a 200 comes back."""
        policy = no_wait_policy()
        send = Mock(side_effect=[make_response(503), make_response(502), make_response(200, {"ok": True})])

        response = policy.call(send)

        assert response.status_code == 200
        assert send.call_count == 3
        assert [c.args[0] for c in policy.sleep.call_args_list] == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        """The last 5xx response is returned once retries run out."""
        policy = no_wait_policy()
        send = Mock(return_value=make_response(500))

        assert policy.call(send).status_code == 500
        assert send.call_count == 4

    def test_network_errors_reraised(self):
        """Connection errors that outlast the retries propagate."""
        policy = no_wait_policy()
        send = Mock(side_effect=requests.ConnectionError("refused"))

        with pytest.raises(requests.ConnectionError):
            policy.call(send)
        assert send.call_count == 4

    def test_rate_limit_not_retried(self):
        """A 429 is returned immediately."""
        policy = no_wait_policy()
        send = Mock(return_value=make_response(429, headers={"retry-after": "30"}))

        assert policy.call(send).status_code == 429
        assert send.call_count == 1
        policy.sleep.assert_not_called()

    def test_client_errors_not_retryable(self):
        """4xx responses are permanent."""
        assert not is_retryable(response=make_response(404))
        assert is_retryable(error=requests.Timeout())


@pytest.fixture
def jira_session():
    return Mock()


@pytest.fixture
def jira(settings, jira_session):
    return JiraClient(settings, session=jira_session, retry_policy=no_wait_policy())


class TestJiraClient:
    """Test Jira requests and error mapping."""

    def test_sets_basic_auth(self, jira, jira_session):
        """The session should carry the email and token."""
        assert jira_session.auth == ("test@example.com", "test-token-123")
        assert jira.server == "https://test.atlassian.net"

    def test_http_error_raises(self, jira, jira_session):
        """4xx responses become JiraApiError with the status code."""
        jira_session.request.return_value = make_response(404, {})

        with pytest.raises(JiraApiError) as exc:
            jira.get_sprint(1)
        assert exc.value.status_code == 404

    def test_rate_limit_raises(self, jira, jira_session):
        """A 429 surfaces as a rate limit error."""
        jira_session.request.return_value = make_response(429, {}, {"retry-after": "12"})

        with pytest.raises(JiraApiError) as exc:
            jira.get_board()
        assert exc.value.status_code == 429
        assert "12" in str(exc.value)

    def test_network_failure_raises(self, jira, jira_session):
        """Exhausted network retries become JiraApiError."""
        jira_session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(JiraApiError):
            jira.get_board()
        assert jira_session.request.call_count == 4

    def test_search_all_pages_through_post(self, jira, jira_session):
        """Search should POST each page with an advancing startAt."""
        data = [{"key": f"PROJ-{i}"} for i in range(250)]

        def respond(method, url, params=None, json=None, timeout=None):
            start = json["startAt"]
            return make_response(200, {"issues": data[start:start + json["maxResults"]], "total": 250})

        jira_session.request.side_effect = respond

        issues = jira.search_all("project = PROJ")

        assert len(issues) == 250
        assert jira_session.request.call_count == 3
        assert all(c.args[0] == "POST" for c in jira_session.request.call_args_list)

    def test_detail_batches_stay_under_100(self, jira):
        """250 keys should be fetched in batches of at most 100."""
        keys = [f"PROJ-{i}" for i in range(250)]
        with patch.object(JiraClient, "search_issues", return_value={"issues": []}) as search:
            jira.fetch_issue_details(keys, ["summary"])

        batch_sizes = [len(c.args[0][len("key in ("):-1].split(",")) for c in search.call_args_list]
        assert batch_sizes == [100, 100, 50]

    def test_failed_detail_batch_skipped(self, jira):
        """A failing batch is dropped and the rest still returned."""
        keys = [f"PROJ-{i}" for i in range(150)]
        with patch.object(JiraClient, "search_issues",
                          side_effect=[JiraApiError("boom", 500), {"issues": [{"key": "PROJ-120"}]}]):
            issues = jira.fetch_issue_details(keys, ["summary"])

        assert issues == [{"key": "PROJ-120"}]

    def test_find_issues_falls_back_to_search(self, jira):
        """Board search failure should fall back to the platform search."""
        with patch.object(JiraClient, "fetch_board_issues", side_effect=JiraApiError("gone", 404)), \
                patch.object(JiraClient, "search_all", return_value=[{"key": "PROJ-1"}]) as search_all:
            issues = jira.find_issues("project = PROJ", "key,summary")

        assert issues == [{"key": "PROJ-1"}]
        search_all.assert_called_once_with("project = PROJ", ["key", "summary"])

    def test_project_key_from_sample_issue(self, jira, jira_session):
        """Without a board location the project key comes from an issue key."""
        jira_session.request.side_effect = [
            make_response(200, {"id": 7, "location": {}}),
            make_response(200, {"issues": [{"key": "ENG-123"}]}),
        ]

        assert jira.get_project_key() == "ENG"
        assert jira.get_project_key() == "ENG"
        assert jira_session.request.call_count == 2

    def test_sprint_field_lookup(self, jira, jira_session):
        """The sprint field id is read from field metadata."""
        jira_session.request.return_value = make_response(200, [
            {"id": "summary", "name": "Summary"},
            {"id": "customfield_10101", "name": "Sprint", "schema": {"custom": "com.pyxis.greenhopper.jira:gh-sprint"}},
        ])

        assert jira.get_sprint_field_id() == "customfield_10101"

    def test_lookup_user_tries_endpoints(self, jira, jira_session):
        """A failing endpoint moves on to the bulk endpoint."""
        jira_session.request.side_effect = [
            make_response(404, {}),
            make_response(200, {"values": [{"accountId": "abc", "displayName": "Joe"}]}),
        ]

        assert jira.lookup_user("abc")["displayName"] == "Joe"

    def test_changelog_failure_yields_empty(self, jira):
        """A changelog that cannot be fetched becomes an empty list."""
        with patch.object(JiraClient, "get_issue_changelog", side_effect=JiraApiError("nope", 403)):
            assert jira.fetch_changelogs(["PROJ-1"]) == {"PROJ-1": []}


class TestGitHubClient:
    """Test GitHub requests."""

    @pytest.fixture
    def github(self, github_settings):
        session = Mock()
        session.headers = {}
        return GitHubClient(github_settings, session=session, retry_policy=no_wait_policy())

    def test_token_header(self, github):
        """Requests should use token auth."""
        assert github.session.headers["Authorization"] == "token gh-token"
        assert github.is_configured()

    def test_pages_until_short_page(self, github):
        """Repositories are paged 100 at a time."""
        github.session.get.side_effect = [
            make_response(200, [{"name": f"r{i}"} for i in range(100)]),
            make_response(200, [{"name": "last"}]),
        ]

        repos = github.list_repositories()

        assert len(repos) == 101
        assert github.session.get.call_args_list[1].kwargs["params"]["page"] == 2

    def test_exhausted_rate_limit(self, github):
        """A 403 with no remaining quota is a rate limit error."""
        github.session.get.return_value = make_response(403, {}, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "99"})

        with pytest.raises(GitHubApiError) as exc:
            github.get_reviews("acme/api", 1)
        assert exc.value.status_code == 403
