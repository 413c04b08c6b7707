"""Exception types raised by the team health services."""

from typing import Optional


class TeamHealthError(Exception):
    """Base exception for all team health dashboard errors."""


class ConfigurationError(TeamHealthError):
    """Raised when required environment configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class UpstreamError(TeamHealthError):
    """Raised when an upstream API request fails permanently."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class JiraApiError(UpstreamError):
    """Raised when a Jira API request fails or returns HTTP >= 400."""


class GitHubApiError(UpstreamError):
    """Raised when a GitHub API request fails or returns HTTP >= 400."""


class NoClosedSprintError(TeamHealthError):
    """Raised when the board has no closed sprint to build a retro from."""

    status_code = 503
