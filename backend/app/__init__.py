"""Flask application factory."""

import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from services.config import Settings, load_settings
from services.github_client import GitHubClient
from services.identity_cache import IdentityCache
from services.jira_client import JiraClient


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Optional[Settings] = None, jira: Optional[JiraClient] = None,
               github: Optional[GitHubClient] = None, identity_cache: Optional[IdentityCache] = None):
    """Create and configure the Flask application.

    Clients and the identity cache live for the life of the app on
    ``app.extensions["team_health"]``; tests pass their own.
    """
    settings = settings or load_settings()
    configure_logging(settings)

    app = Flask(__name__)
    app.config["DEBUG"] = settings.debug

    # Enable CORS for the JSON format of the reports
    CORS(app, resources={
        r"/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "OPTIONS"],
            "allow_headers": ["Content-Type", "HX-Request", "HX-Current-URL", "HX-Target"],
        }
    })

    app.extensions["team_health"] = {
        "settings": settings,
        "jira": jira or JiraClient(settings),
        "github": github or GitHubClient(settings),
        "identity_cache": identity_cache if identity_cache is not None else IdentityCache(),
    }

    # Register blueprints
    from app.api import home, slow, done, backlog, progress, load, pr, creep, sweat, retro
    for module in (home, slow, done, backlog, progress, load, pr, creep, sweat, retro):
        app.register_blueprint(module.bp)

    if not settings.github_configured:
        app.logger.info(f"GitHub not configured, /pr will show setup help ({', '.join(settings.missing_github_vars())})")

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
