"""Stuck ticket report."""

from flask import Blueprint

from app.api.common import render_error, render_report, report_service
from services.issue_reports import IssueReportService

bp = Blueprint("slow", __name__)


@bp.route("/slow", methods=["GET"])
def get_slow():
    """Open-sprint tickets in a working status for 7+ days, grouped by status."""
    try:
        report = report_service(IssueReportService).get_stuck_report()
        return render_report("slow.html", "Slow Tickets", report)
    except Exception as e:
        return render_error(e, "Slow Tickets")
