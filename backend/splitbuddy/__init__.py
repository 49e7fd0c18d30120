from __future__ import annotations

import logging

from flask import Flask
from flask_cors import CORS

from splitbuddy.api.routes import api_bp
from splitbuddy.config import Config
from splitbuddy.db.repository import BillRepository

logger = logging.getLogger(__name__)


def create_app(config: object = Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config)
    CORS(app)  # ok for MVP; tighten later

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("splitbuddy").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    repo = BillRepository(app.config.get("DATABASE_URL", ""))
    if repo.enabled:
        try:
            repo.ensure_schema()
        except Exception:
            # the API still serves previews; bill endpoints report db_error
            logger.exception("Failed to create the bills table")

    app.register_blueprint(api_bp)
    return app
