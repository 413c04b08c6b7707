"""Landing page listing the reports."""

from flask import Blueprint

from app.api.common import render_page

bp = Blueprint("home", __name__)

REPORTS = [
    {"path": "/slow", "name": "Slow", "description": "Tickets stuck in one status for a week or more"},
    {"path": "/done", "name": "Done", "description": "Completed tickets by period"},
    {"path": "/backlog", "name": "Backlog", "description": "Age of the backlog"},
    {"path": "/progress", "name": "Progress", "description": "Status, assignee, priority and type changes"},
    {"path": "/load", "name": "Load", "description": "Sprint load per person and board column"},
    {"path": "/pr", "name": "PRs", "description": "Open GitHub pull requests and their reviewers"},
    {"path": "/creep", "name": "Creep", "description": "Scope change per sprint"},
    {"path": "/sweat", "name": "Sweat", "description": "Completion ratio per contributor"},
    {"path": "/retro", "name": "Retro", "description": "Last sprint retrospective digest"},
]


@bp.route("/", methods=["GET"])
def index():
    return render_page("home.html", "Team Health", reports=REPORTS)
