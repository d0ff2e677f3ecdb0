"""Flask application factory."""

from flask import Flask
from flask_cors import CORS

from services.backfill import BackfillOrchestrator
from services.settings import load_settings
from services.snapshot_service import SnapshotService
from services.store import SqlStore


def create_app(store=None, settings=None):
    """Create and configure the Flask application.

    Args:
        store: Optional SnapshotStore. Defaults to a SqlStore on DATABASE_URL.
        settings: Optional Settings. Defaults to the JSON config + environment.
    """
    app = Flask(__name__)

    settings = settings or load_settings()

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": list(settings.cors_origins),
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "X-Azure-Org-Url", "X-Azure-Pat", "X-Azure-Project"
            ]
        }
    })

    if store is None:
        store = SqlStore(settings.database_url)
        store.ensure_tables()
        app.logger.info("Snapshot store ready")

    service = SnapshotService(store, settings)
    app.config["SETTINGS"] = settings
    app.config["STORE"] = store
    app.config["SNAPSHOT_SERVICE"] = service
    app.config["BACKFILL"] = BackfillOrchestrator(service)

    # Register blueprints
    from app.api import snapshots, debug, enrichment
    app.register_blueprint(snapshots.bp)
    app.register_blueprint(debug.bp)
    app.register_blueprint(enrichment.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
