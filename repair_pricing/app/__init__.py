from __future__ import annotations

import logging

from flask import Flask

logger = logging.getLogger(__name__)


def create_app(config_path: str | None = None) -> Flask:
    """Application factory used by tests and runtime."""
    from .config import load_config
    from .database import init_db
    from .api import register_api
    from ..routes.settings import settings_bp

    config = load_config(config_path)
    app = Flask(__name__, static_folder=None)
    app.config.update(config)

    init_db(app)
    register_api(app)
    app.register_blueprint(settings_bp)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    logger.info("Pricing API ready (database %s)", app.config.get("DATABASE_URL"))
    return app
