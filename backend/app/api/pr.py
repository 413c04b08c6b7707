"""Open pull request report."""

from datetime import datetime

from flask import Blueprint

from app.api.common import get_services, render_error, render_page, render_report, wants_json
from services.pull_requests import PullRequestService

bp = Blueprint("pr", __name__)


@bp.route("/pr", methods=["GET"])
def get_pull_requests():
    """Open PRs across the GitHub org with reviewer state.

    Renders setup help instead when GITHUB_TOKEN or GITHUB_ORG is missing.
    """
    services = get_services()
    settings = services["settings"]

    if not settings.github_configured:
        missing = settings.missing_github_vars()
        if wants_json():
            return {"error": f"GitHub is not configured. Missing: {', '.join(missing)}", "missing": missing}, 503
        return render_page("pr_setup.html", "Pull Requests", missing=missing)

    try:
        service = PullRequestService(services["github"], tz=settings.timezone)
        report = service.get_pr_report(datetime.now(settings.timezone))
        return render_report("pr.html", "Pull Requests", report)
    except Exception as e:
        return render_error(e, "Pull Requests")
