"""Backlog age report."""

from flask import Blueprint

from app.api.common import render_error, render_report, report_service
from services.issue_reports import IssueReportService

bp = Blueprint("backlog", __name__)


@bp.route("/backlog", methods=["GET"])
def get_backlog():
    try:
        report = report_service(IssueReportService).get_backlog_report()
        return render_report("backlog.html", "Backlog", report)
    except Exception as e:
        return render_error(e, "Backlog")
