"""Scope creep report."""

from flask import Blueprint

from app.api.common import render_error, render_report, report_service
from services.sprint_reports import SprintReportService

bp = Blueprint("creep", __name__)


@bp.route("/creep", methods=["GET"])
def get_creep():
    try:
        report = report_service(SprintReportService).get_creep_report()
        return render_report("creep.html", "Scope Creep", report)
    except Exception as e:
        return render_error(e, "Scope Creep")
