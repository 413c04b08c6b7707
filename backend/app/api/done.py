"""Completed ticket report."""

from flask import Blueprint, request

from app.api.common import render_error, render_report, report_service
from services.issue_reports import IssueReportService

bp = Blueprint("done", __name__)


@bp.route("/done", methods=["GET"])
def get_done():
    """Tickets completed in a period.

    Query params:
        - period: this-sprint (default), today, yesterday, this-week,
          last-7-days, this-month or last-month
    """
    try:
        report = report_service(IssueReportService).get_done_report(request.args.get("period"))
        return render_report("done.html", f"Done – {report['period_label']}", report)
    except Exception as e:
        return render_error(e, "Done")
