"""
Flask application factory and server entry-point.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

from flask import Flask
from flask_cors import CORS
from sqlalchemy.engine import Engine

from mailtrack.api.routes import register_routes
from mailtrack.config import MAX_ATTACHMENTS, MAX_FILE_SIZE, SECRET_KEY, TOKEN_EXPIRY_HOURS, UPLOAD_PATH
from mailtrack.database import create_schema, init_engine
from mailtrack.directory import DirectoryService
from mailtrack.logging_config import setup_logging
from mailtrack.mail_service import MailService
from mailtrack.storage import LocalBlobStore
from mailtrack.workflow import ReferralWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Services:
    engine: Engine
    directory: DirectoryService
    mail: MailService
    workflow: ReferralWorkflow
    blob_store: LocalBlobStore


def build_services(engine: Engine, upload_path: str = UPLOAD_PATH) -> Services:
    directory = DirectoryService(engine)
    blob_store = LocalBlobStore(upload_path)
    return Services(
        engine=engine,
        directory=directory,
        mail=MailService(engine, directory, blob_store),
        workflow=ReferralWorkflow(engine, directory),
        blob_store=blob_store,
    )


def create_app(engine: Optional[Engine] = None, upload_path: str = UPLOAD_PATH,
               secret_key: str = SECRET_KEY) -> Flask:
    """Build and return a fully configured Flask application."""
    setup_logging()
    app = Flask(__name__)
    app.config["JWT_SECRET_KEY"] = secret_key
    # whole multipart body: every attachment plus form fields
    app.config["MAX_CONTENT_LENGTH"] = MAX_FILE_SIZE * MAX_ATTACHMENTS + 1024 * 1024
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            logger.info("[init] Initializing database connection...")
            engine = init_engine()
        create_schema(engine)
        services = build_services(engine, upload_path)
        logger.info("[init] API server ready")
    except Exception:
        logger.critical("[FATAL] Failed to initialize", exc_info=True)
        sys.exit(1)

    app.extensions["mailtrack"] = services

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, services)

    return app


def main():
    """Run the development server."""
    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    logger.info("[server] Starting MailTrack API on %s:%s (debug=%s)", host, port, debug)
    logger.info("[server] Token expiry: %s hours", TOKEN_EXPIRY_HOURS)
    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
