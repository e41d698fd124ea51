"""
Referral and comment endpoints.
"""

from flask import request

from mailtrack.api.auth import token_required
from mailtrack.api.envelope import json_body, respond, respond_page
from mailtrack.errors import ValidationError
from mailtrack.models import ReferralStatus
from mailtrack.validation import (
    CommentCreateRequest,
    ReferralCreateRequest,
    StatusUpdateRequest,
    parse,
    parse_page,
)


def _status_filter(value):
    if not value:
        return None
    try:
        return ReferralStatus(value)
    except ValueError:
        raise ValidationError("Validation error",
                              [f"status: must be one of {', '.join(s.value for s in ReferralStatus)}"])


def register_referral_routes(app, services):
    workflow = services.workflow

    @app.route("/api/referrals/section/<section_id>", methods=["GET"])
    @token_required
    def list_section_referrals(principal, section_id):
        page = workflow.list_section_referrals(
            principal, section_id, parse_page(request.args), _status_filter(request.args.get("status")),
        )
        return respond_page(page, "Referrals retrieved successfully")

    @app.route("/api/referrals/<referral_id>", methods=["GET"])
    @token_required
    def get_referral(principal, referral_id):
        referral = workflow.get_referral(principal, referral_id)
        return respond(referral.to_dict(), "Referral retrieved successfully")

    @app.route("/api/referrals", methods=["POST"])
    @token_required
    def create_referral(principal):
        body = parse(ReferralCreateRequest, json_body())
        referral = workflow.create_referral(principal, body.mail_id, body.section_id)
        return respond(referral.to_dict(), "Referral created successfully", status=201)

    @app.route("/api/referrals/<referral_id>/status", methods=["PUT"])
    @token_required
    def update_referral_status(principal, referral_id):
        body = parse(StatusUpdateRequest, json_body())
        referral = workflow.update_status(principal, referral_id, body.status)
        return respond(referral.to_dict(), "Referral status updated successfully")

    @app.route("/api/referrals/<referral_id>", methods=["DELETE"])
    @token_required
    def delete_referral(principal, referral_id):
        workflow.delete_referral(principal, referral_id)
        return respond(None, "Referral deleted successfully")

    @app.route("/api/referrals/<referral_id>/comments", methods=["GET"])
    @token_required
    def list_comments(principal, referral_id):
        comments = workflow.list_comments(principal, referral_id)
        return respond([c.to_dict() for c in comments], "Comments retrieved successfully")

    @app.route("/api/referrals/<referral_id>/comments", methods=["POST"])
    @token_required
    def add_comment(principal, referral_id):
        body = parse(CommentCreateRequest, json_body())
        comment = workflow.add_comment(principal, referral_id, body.text)
        return respond(comment.to_dict(), "Comment added successfully", status=201)
