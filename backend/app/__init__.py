"""Flask application factory."""

import logging
from flask import Flask
from flask_cors import CORS

from app.settings import PlaneSettings, load_settings
from services.plane_cache import CacheService
from services.plane_client import PlaneClient
from services.plane_fetchers import PlaneDataFetcher
from services.plane_request import ConcurrencyLimiter, RequestExecutor
from services.team_activities import TeamActivityService
from services.team_summary import TeamSummaryService


class PlaneServices:
    """The service graph shared by every request of one app."""

    def __init__(self, settings: PlaneSettings):
        self.settings = settings
        self.client = PlaneClient(
            settings.base_url,
            settings.api_key,
            settings.workspace_slug,
            timeout=settings.request_timeout
        )
        self.cache = CacheService(ttls=settings.ttls)
        self.executor = RequestExecutor(
            max_retries=settings.max_retries,
            initial_delay=settings.initial_retry_delay
        )
        self.fetcher = PlaneDataFetcher(
            self.client,
            self.cache,
            self.executor,
            max_iterations=settings.max_iterations,
            max_work_items_per_project=settings.max_work_items_per_project
        )
        self.activities = TeamActivityService(
            self.fetcher,
            ConcurrencyLimiter(settings.max_concurrent_fetches),
            max_project_workers=settings.max_project_workers
        )
        self.summaries = TeamSummaryService(
            self.activities,
            ignored_members=settings.ignored_members,
            comment_limit=settings.comment_truncate_length
        )


def configure_logging(app, level_name: str):
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app.logger.setLevel(level)


def create_app(settings: PlaneSettings = None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type"]
        }
    })

    if settings is None:
        settings = load_settings()
    configure_logging(app, settings.log_level)

    services = PlaneServices(settings)
    app.extensions["plane"] = services
    if services.client.is_configured:
        app.logger.info(f"Plane client ready for workspace {settings.workspace_slug}")
    else:
        app.logger.warning("Plane client not configured, API calls will answer 503")

    # Register blueprints
    from app.api import activities, summaries, projects, debug
    app.register_blueprint(activities.bp)
    app.register_blueprint(summaries.bp)
    app.register_blueprint(projects.bp)
    app.register_blueprint(debug.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {
            "status": "ok",
            "configured": services.client.is_configured,
            "session": services.cache.current_token(),
        }

    return app
