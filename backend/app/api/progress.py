"""Work-in-progress change report."""

from flask import Blueprint, request

from app.api.common import render_error, render_report, report_service
from services.issue_reports import IssueReportService

bp = Blueprint("progress", __name__)


def get_days():
    """Optional ``days`` override; anything but a positive integer is ignored."""
    days = request.args.get("days")
    if days:
        try:
            value = int(days)
        except ValueError:
            return None
        return value if value > 0 else None
    return None


@bp.route("/progress", methods=["GET"])
def get_progress():
    """Tickets whose status, assignee, priority or type changed.

    Query params:
        - period: this-sprint (default) or any other period name
        - days: Last N days, overrides period
    """
    try:
        report = report_service(IssueReportService).get_progress_report(request.args.get("period"), get_days())
        return render_report("progress.html", f"Progress – {report['period_label']}", report)
    except Exception as e:
        return render_error(e, "Progress")
