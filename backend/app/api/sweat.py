"""Contributor completion report."""

from flask import Blueprint

from app.api.common import render_error, render_report, report_service
from services.sprint_reports import SprintReportService

bp = Blueprint("sweat", __name__)


@bp.route("/sweat", methods=["GET"])
def get_sweat():
    try:
        report = report_service(SprintReportService).get_sweat_report()
        return render_report("sweat.html", "Sweat", report)
    except Exception as e:
        return render_error(e, "Sweat")
