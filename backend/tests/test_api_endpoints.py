"""Tests for API endpoints."""

import pytest
import json

from services.errors import JiraApiError

HTMX = {"HX-Request": "true"}


class TestHealth:
    """Test health and landing pages."""

    def test_health(self, client):
        """Should return ok."""
        response = client.get("/health")
        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ok"}

    def test_home_lists_reports(self, client):
        """The landing page links every report."""
        response = client.get("/")
        html = response.get_data(as_text=True)

        assert response.status_code == 200
        for path in ("/slow", "/done", "/backlog", "/progress", "/load", "/pr", "/creep", "/sweat", "/retro"):
            assert f'href="{path}"' in html


class TestRendering:
    """Test HTMX partials, full pages and JSON."""

    @pytest.mark.parametrize("path,title", [
        ("/slow", "Slow Tickets"),
        ("/backlog", "Backlog"),
        ("/load", "Load Report"),
        ("/creep", "Scope Creep"),
        ("/sweat", "Sweat"),
        ("/done", "Done – This Sprint"),
        ("/progress", "Progress – This Sprint"),
    ])
    def test_htmx_partial_starts_with_title(self, client, path, title):
        """HTMX requests get the fragment with an out-of-band title first."""
        response = client.get(path, headers=HTMX)
        html = response.get_data(as_text=True)

        assert response.status_code == 200
        assert html.startswith(f'<title hx-swap-oob="true">{title}</title>')
        assert "<!DOCTYPE html>" not in html

    def test_full_page(self, client):
        """Plain requests get the whole page."""
        html = client.get("/slow").get_data(as_text=True)

        assert html.startswith("<!DOCTYPE html>")
        assert "<title>Slow Tickets</title>" in html

    def test_json_envelope(self, client):
        """``format=json`` wraps the report in ``data``."""
        response = client.get("/slow?format=json")
        data = json.loads(response.data)

        assert response.status_code == 200
        assert data["data"]["total"] == 0
        assert data["data"]["statuses"][0] == "To Do"

    def test_stuck_report_rendered(self, client, mock_jira, stuck_issue, stuck_changelog, active_sprint):
        """A stuck ticket shows with its day count and badge."""
        mock_jira.find_issues.return_value = [{"key": "PROJ-101"}]
        mock_jira.fetch_issue_details.return_value = [stuck_issue]
        mock_jira.get_issue_changelog.return_value = stuck_changelog
        mock_jira.get_sprints.return_value = [active_sprint]

        html = client.get("/slow", headers=HTMX).get_data(as_text=True)

        assert "PROJ-101" in html
        assert 'class="badge warning"' in html
        assert "Joe Smith" in html


class TestErrors:
    """Test upstream failures."""

    def test_jira_status_passed_through(self, client, mock_jira):
        """A Jira 401 surfaces as a 401 error panel."""
        mock_jira.find_issues.side_effect = JiraApiError("Unauthorized", 401)

        response = client.get("/slow")

        assert response.status_code == 401
        assert "Unauthorized" in response.get_data(as_text=True)

    def test_json_error(self, client, mock_jira):
        """JSON callers get an error object."""
        mock_jira.find_issues.side_effect = JiraApiError("Unauthorized", 401)

        response = client.get("/backlog?format=json")

        assert response.status_code == 401
        assert json.loads(response.data) == {"error": "Unauthorized"}

    def test_unexpected_error_is_500(self, client, mock_jira):
        """Errors without a status code are 500s."""
        mock_jira.get_sprints.side_effect = RuntimeError("boom")

        assert client.get("/creep").status_code == 500


class TestPeriods:
    """Test period and days parameters."""

    def test_unknown_done_period(self, client):
        """An unknown period falls back to this month."""
        data = json.loads(client.get("/done?period=bogus&format=json").data)
        assert data["data"]["period_label"] == "This Month"

    def test_progress_days(self, client):
        """``days`` overrides the period."""
        data = json.loads(client.get("/progress?days=3&format=json").data)
        assert data["data"]["period_label"] == "Last 3 Days"
        assert data["data"]["days"] == 3

    def test_progress_bad_days_ignored(self, client):
        """Non-numeric days fall back to the default period."""
        data = json.loads(client.get("/progress?days=abc&format=json").data)
        assert data["data"]["period_label"] == "This Sprint"
        assert data["data"]["days"] is None


class TestPullRequests:
    """Test the /pr report."""

    def test_setup_help_without_github(self, client):
        """Missing GitHub settings render setup instructions."""
        response = client.get("/pr")
        html = response.get_data(as_text=True)

        assert response.status_code == 200
        assert "GITHUB_TOKEN" in html
        assert "GITHUB_ORG" in html

    def test_setup_json_is_503(self, client):
        """JSON callers are told what is missing."""
        response = client.get("/pr?format=json")
        data = json.loads(response.data)

        assert response.status_code == 503
        assert data["missing"] == ["GITHUB_TOKEN", "GITHUB_ORG"]

    def test_report_with_github(self, github_settings, mock_jira, mock_github, identity_cache):
        """With GitHub configured the org's open PRs are listed."""
        from app import create_app
        app = create_app(github_settings, jira=mock_jira, github=mock_github, identity_cache=identity_cache)
        app.config["TESTING"] = True

        response = app.test_client().get("/pr", headers=HTMX)
        html = response.get_data(as_text=True)

        assert response.status_code == 200
        assert "acme" in html
        assert "4999/5000" in html


class TestRetro:
    """Test the /retro digest."""

    def test_no_closed_sprint_is_503(self, client, mock_jira):
        """Without a closed sprint the page explains why."""
        response = client.get("/retro")

        assert response.status_code == 503
        assert response.get_data(as_text=True) == "No closed sprint found for retro."

    def test_html_fragment(self, client, mock_jira, sample_sprints):
        """``format=html`` is a standalone fragment for email."""
        mock_jira.get_sprints.return_value = sample_sprints

        response = client.get("/retro?format=html")
        html = response.get_data(as_text=True)

        assert response.status_code == 200
        assert "Last Sprint Retro: Sprint 41" in html
        assert "<nav" not in html

    def test_htmx_title(self, client, mock_jira, sample_sprints):
        """The page title names the sprint."""
        mock_jira.get_sprints.return_value = sample_sprints

        html = client.get("/retro", headers=HTMX).get_data(as_text=True)

        assert html.startswith('<title hx-swap-oob="true">Last Sprint Retro – Sprint 41</title>')

    def test_json_digest(self, client, mock_jira, sample_sprints):
        """The JSON digest carries every section."""
        mock_jira.get_sprints.return_value = sample_sprints

        data = json.loads(client.get("/retro?format=json").data)["data"]

        for section in ("progress", "incomplete", "backlog", "high_priority", "creep", "sweat", "pr", "stuck", "load"):
            assert section in data
        assert data["pr"] is None
