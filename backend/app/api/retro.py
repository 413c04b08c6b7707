"""Last sprint retrospective."""

from flask import Blueprint, render_template, request

from app.api.common import get_services, render_error, render_report, report_service
from services.errors import NoClosedSprintError
from services.pull_requests import PullRequestService
from services.retro import RetroService

bp = Blueprint("retro", __name__)


@bp.route("/retro", methods=["GET"])
def get_retro():
    """Retro digest for the most recently closed sprint.

    Query params:
        - format: ``html`` returns a standalone fragment for pasting into
          email, ``json`` the raw digest
    """
    services = get_services()
    try:
        pull_requests = PullRequestService(services["github"], tz=services["settings"].timezone)
        digest = report_service(RetroService, pull_requests=pull_requests).get_retro()
    except NoClosedSprintError as e:
        return str(e), e.status_code
    except Exception as e:
        return render_error(e, "Last Sprint Retro")

    if request.args.get("format") == "html":
        return render_template("retro_fragment.html", digest=digest)
    return render_report("retro.html", f"Last Sprint Retro – {digest['period_label']}", digest)
