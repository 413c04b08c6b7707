"""Sprint load report."""

from flask import Blueprint

from app.api.common import render_error, render_report, report_service
from services.issue_reports import IssueReportService

bp = Blueprint("load", __name__)


@bp.route("/load", methods=["GET"])
def get_load():
    """Assignee x board column for the open sprint, plus upcoming sprints."""
    try:
        report = report_service(IssueReportService).get_load_report()
        return render_report("load.html", "Load Report", report)
    except Exception as e:
        return render_error(e, "Load Report")
