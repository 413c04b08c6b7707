"""Helpers shared by the report blueprints."""

import logging

from flask import current_app, jsonify, render_template, request
from markupsafe import escape

logger = logging.getLogger(__name__)


def get_services() -> dict:
    return current_app.extensions["team_health"]


def report_service(service_class, **kwargs):
    """Build a per-request report service over the app-wide clients and cache."""
    services = get_services()
    return service_class(services["jira"], services["settings"], services["identity_cache"], **kwargs)


def is_htmx_request() -> bool:
    return request.headers.get("HX-Request", "").lower() == "true"


def wants_json() -> bool:
    return request.args.get("format") == "json"


def render_page(template: str, title: str, status: int = 200, **context):
    """HTMX partial with an out-of-band title, or the full page around it."""
    if is_htmx_request():
        html = render_template(template, **context)
        return f'<title hx-swap-oob="true">{escape(title)}</title>\n{html}', status
    return render_template("base.html", title=title, content_template=template, **context), status


def render_report(template: str, title: str, report: dict):
    if wants_json():
        return jsonify({"data": report})
    return render_page(template, title, report=report)


def error_status(error: Exception) -> int:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) and status >= 400 else 500


def render_error(error: Exception, title: str):
    """Error panel (or JSON error) carrying the upstream status when known."""
    logger.exception(f"{title} failed: {error}")
    status = error_status(error)
    if wants_json():
        return jsonify({"error": str(error)}), status
    return render_page("error.html", title, status=status, message=str(error), status_code=status)
