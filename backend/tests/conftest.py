"""Shared fixtures for team health dashboard tests."""

import pytest
from datetime import datetime
from unittest.mock import Mock
from zoneinfo import ZoneInfo


@pytest.fixture
def settings():
    """Settings for a test Jira site without GitHub."""
    from services.config import Settings
    return Settings(
        jira_host="test.atlassian.net",
        jira_email="test@example.com",
        jira_api_token="test-token-123",
        board_id=7,
        tz="America/New_York",
    )


@pytest.fixture
def github_settings(settings):
    """Settings with GitHub configured."""
    from dataclasses import replace
    return replace(settings, github_token="gh-token", github_org="acme")


@pytest.fixture
def now():
    """Fixed report time: Friday Mar 15, 2024, noon Eastern."""
    return datetime(2024, 3, 15, 12, 0, tzinfo=ZoneInfo("America/New_York"))


@pytest.fixture
def identity_cache():
    from services.identity_cache import IdentityCache
    return IdentityCache()


@pytest.fixture
def mock_jira():
    """Jira client double with every call returning empty data."""
    from services.jira_client import JiraClient
    jira = Mock(spec=JiraClient)
    jira.get_project_key.return_value = "PROJ"
    jira.get_sprint_field_id.return_value = "customfield_10020"
    jira.find_issues.return_value = []
    jira.fetch_board_issues.return_value = []
    jira.fetch_issue_details.return_value = []
    jira.fetch_changelogs.return_value = {}
    jira.get_issue_changelog.return_value = []
    jira.get_remote_links.return_value = []
    jira.get_dev_status.return_value = []
    jira.get_sprints.return_value = []
    jira.get_sprint_report.return_value = {}
    jira.get_board_issues.return_value = {"issues": [], "total": 0}
    jira.search_issues.return_value = {"issues": [], "total": 0}
    jira.get_board_configuration.return_value = {}
    jira.get_status_names.return_value = {}
    jira.lookup_user.return_value = None
    return jira


@pytest.fixture
def mock_github():
    from services.github_client import GitHubClient
    github = Mock(spec=GitHubClient)
    github.org = "acme"
    github.list_repositories.return_value = []
    github.list_pull_requests.return_value = []
    github.get_reviews.return_value = []
    github.get_requested_reviewers.return_value = {"users": [], "teams": []}
    github.get_rate_limit.return_value = {"remaining": 4999, "limit": 5000, "reset": 0}
    return github


@pytest.fixture
def active_sprint():
    """Two-week sprint containing ``now``."""
    return {
        "id": 42,
        "name": "Sprint 42",
        "state": "active",
        "startDate": "2024-03-11T13:00:00.000Z",
        "endDate": "2024-03-25T13:00:00.000Z",
    }


@pytest.fixture
def sample_sprints(active_sprint):
    """Active sprint plus closed sprints, one without dates."""
    return [
        active_sprint,
        {
            "id": 41,
            "name": "Sprint 41",
            "state": "closed",
            "startDate": "2024-02-26T14:00:00.000Z",
            "endDate": "2024-03-11T13:00:00.000Z",
        },
        {
            "id": 40,
            "name": "Sprint 40",
            "state": "closed",
            "startDate": "2024-02-12T14:00:00.000Z",
            "endDate": "2024-02-26T14:00:00.000Z",
        },
        {"id": 39, "name": "Sprint 39", "state": "closed"},
    ]


@pytest.fixture
def stuck_issue():
    """In Review since Mar 1 after a first stint in review in February."""
    return {
        "key": "PROJ-101",
        "id": "10101",
        "fields": {
            "summary": "Bounced between review and progress",
            "status": {"name": "In Review"},
            "assignee": {
                "accountId": "557058:0e0f1a2b-3c4d-5e6f-7a8b-9c0d1e2f3a4b",
                "displayName": "Joe Smith",
                "avatarUrls": {"48x48": "https://avatars.example.com/joe.png"},
            },
            "created": "2024-01-31T12:00:00.000-0500",
            "issuetype": {"name": "Story"},
            "customfield_10020": [
                {"id": 41, "name": "Sprint 41", "state": "closed"},
                {"id": 42, "name": "Sprint 42", "state": "active"},
            ],
        },
    }


@pytest.fixture
def stuck_changelog():
    """Status walk: To Do -> In Review (Feb 1) -> In Progress (Feb 6) -> In Review (Mar 1)."""
    return [
        {
            "created": "2024-02-01T12:00:00.000-0500",
            "items": [{"field": "status", "fromString": "To Do", "toString": "In Review"}],
        },
        {
            "created": "2024-02-06T12:00:00.000-0500",
            "items": [{"field": "status", "fromString": "In Review", "toString": "In Progress"}],
        },
        {
            "created": "2024-03-01T12:00:00.000-0500",
            "items": [
                {"field": "status", "fromString": "In Progress", "toString": "In Review"},
                {"field": "Sprint", "from": "41", "fromString": "Sprint 41", "to": "41, 42", "toString": "Sprint 41, Sprint 42"},
            ],
        },
    ]


@pytest.fixture
def fresh_issue():
    """Created six days before ``now`` and never moved."""
    return {
        "key": "PROJ-102",
        "id": "10102",
        "fields": {
            "summary": "New work",
            "status": {"name": "To Do"},
            "assignee": None,
            "created": "2024-03-09T12:00:00.000-0500",
            "issuetype": {"name": "Task"},
        },
    }


@pytest.fixture
def app(settings, mock_jira, mock_github, identity_cache):
    """Create Flask test app."""
    import sys
    import os
    sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

    from app import create_app
    app = create_app(settings, jira=mock_jira, github=mock_github, identity_cache=identity_cache)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
