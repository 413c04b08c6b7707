"""Environment configuration for the team health dashboard."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from services.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_VARS = ("JIRA_HOST", "JIRA_EMAIL", "JIRA_API_TOKEN")

DEFAULT_TARGET_STATUSES = (
    "To Do",
    "Ready for Development",
    "In Progress",
    "In Review",
)


@dataclass(frozen=True)
class DigestSettings:
    """Thresholds used by the retro coaching checks."""

    high_priority_names: tuple = ("Highest", "High")
    backlog_age_weeks_threshold: int = 12
    load_imbalance_ratio: float = 2
    pr_open_days_threshold: int = 5


@dataclass(frozen=True)
class Settings:
    """Validated runtime settings."""

    jira_host: str
    jira_email: str
    jira_api_token: str
    board_id: int = 7
    port: int = 3000
    debug: bool = True
    github_token: str = ""
    github_org: str = ""
    tz: str = "America/New_York"
    target_statuses: tuple = DEFAULT_TARGET_STATUSES
    api_timeout: int = 60
    max_retries: int = 3
    retry_delay: float = 1.0
    digest: DigestSettings = field(default_factory=DigestSettings)

    @property
    def jira_base_url(self) -> str:
        return f"https://{self.jira_host}"

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_org)

    def missing_github_vars(self) -> list:
        missing = []
        if not self.github_token:
            missing.append("GITHUB_TOKEN")
        if not self.github_org:
            missing.append("GITHUB_ORG")
        return missing

    def browse_url(self, issue_key: str) -> str:
        return f"{self.jira_base_url}/browse/{issue_key}"


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer, got {value!r}.")


def load_settings(environ=None) -> Settings:
    """Build and validate settings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        A validated ``Settings`` instance.

    Raises:
        ConfigurationError: If a required Jira variable is missing, or a
            numeric value is malformed or out of range.
    """
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_VARS if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(missing),
            missing=missing,
        )

    board_id = _parse_int("JIRA_BOARD_ID", env.get("JIRA_BOARD_ID"), 7)
    if board_id <= 0:
        raise ConfigurationError(f"Invalid value for 'JIRA_BOARD_ID': expected a positive integer, got {board_id}.")

    port = _parse_int("PORT", env.get("PORT"), 3000)
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"Invalid value for 'PORT': expected 1-65535, got {port}.")

    environment = (env.get("APP_ENV") or env.get("FLASK_ENV") or "").lower()
    debug = _parse_bool(env.get("DEBUG"), environment != "production")

    tz = (env.get("TZ") or "").strip() or "America/New_York"
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Invalid value for 'TZ': unknown time zone {tz!r}.")

    github_token = (env.get("GITHUB_TOKEN") or "").strip()
    github_org = (env.get("GITHUB_ORG") or "").strip()
    if not github_token or not github_org:
        logger.warning("GITHUB_TOKEN/GITHUB_ORG not set, the /pr report will show setup instructions")

    host = env["JIRA_HOST"].strip()
    # Accept a pasted URL as well as a bare host
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    host = host.rstrip("/")

    return Settings(
        jira_host=host,
        jira_email=env["JIRA_EMAIL"].strip(),
        jira_api_token=env["JIRA_API_TOKEN"].strip(),
        board_id=board_id,
        port=port,
        debug=debug,
        github_token=github_token,
        github_org=github_org,
        tz=tz,
    )
