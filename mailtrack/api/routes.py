"""
Flask route registration: service info, health, authentication and the
error handlers that render every failure into the response envelope.
"""

import logging

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from mailtrack.api.admin_routes import register_admin_routes
from mailtrack.api.auth import generate_token, token_required
from mailtrack.api.envelope import json_body, respond
from mailtrack.api.mail_routes import register_mail_routes
from mailtrack.api.referral_routes import register_referral_routes
from mailtrack.config import SECRET_KEY
from mailtrack.database import check_health
from mailtrack.errors import InternalError, MailTrackError
from mailtrack.rbac import authenticate_user
from mailtrack.validation import LoginRequest, parse

logger = logging.getLogger(__name__)


def register_routes(app, services):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "MailTrack API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "mails": "/api/mails",
                "search": "/api/mails/search",
                "referrals": "/api/referrals",
                "admin": "/api/admin",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        healthy = check_health(services.engine)
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": {"database": healthy},
        }), 200 if healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        body = parse(LoginRequest, json_body())
        principal = authenticate_user(services.engine, body.username, body.password)
        token = generate_token(principal, current_app.config.get("JWT_SECRET_KEY", SECRET_KEY))
        logger.info("Login: user=%s role=%s", principal.id, principal.role.value)
        return respond({"user": principal.to_dict(), "token": token}, "Login successful")

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def me(principal):
        return respond(principal.to_dict(), "User data retrieved successfully")

    register_mail_routes(app, services)
    register_referral_routes(app, services)
    register_admin_routes(app, services)

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(MailTrackError)
    def domain_error(e):
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        messages = {404: "Endpoint not found", 405: "Method not allowed",
                    413: "Upload too large"}
        return jsonify({"success": False, "message": messages.get(e.code, e.name)}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify(InternalError().to_dict()), 500
