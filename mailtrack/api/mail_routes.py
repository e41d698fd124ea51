"""
Mail and attachment endpoints.
"""

from flask import request

from mailtrack.api.auth import token_required
from mailtrack.api.envelope import respond, respond_page
from mailtrack.config import MAX_ATTACHMENTS
from mailtrack.errors import ValidationError
from mailtrack.validation import MailCreateRequest, SearchRequest, parse, parse_page


def register_mail_routes(app, services):

    @app.route("/api/mails", methods=["GET"])
    @token_required
    def list_mails(principal):
        page = services.mail.list_mails(principal, parse_page(request.args))
        return respond_page(page, "Mails retrieved successfully")

    @app.route("/api/mails/search", methods=["GET"])
    @token_required
    def search_mails(principal):
        filters = parse(SearchRequest, request.args.to_dict()).to_filters()
        page = services.mail.search_mails(principal, filters, parse_page(request.args))
        return respond_page(page, "Search completed successfully")

    @app.route("/api/mails/<mail_id>", methods=["GET"])
    @token_required
    def get_mail(principal, mail_id):
        mail = services.mail.get_mail(principal, mail_id)
        return respond(mail.to_dict(with_attachments=True), "Mail retrieved successfully")

    @app.route("/api/mails", methods=["POST"])
    @token_required
    def create_mail(principal):
        if request.is_json:
            payload = request.get_json(silent=True)
            files = []
        else:
            payload = request.form.to_dict()
            files = [f for f in request.files.getlist("attachments") if f and f.filename]

        body = parse(MailCreateRequest, payload)
        if len(files) > MAX_ATTACHMENTS:
            raise ValidationError("Validation error",
                                  [f"attachments: at most {MAX_ATTACHMENTS} files are allowed"])

        uploads = services.blob_store.save_all(files)
        mail = services.mail.create_mail(principal, body.to_new_mail(), uploads)
        return respond(mail.to_dict(with_attachments=True), "Mail created successfully", status=201)

    @app.route("/api/mails/<mail_id>/referrals", methods=["GET"])
    @token_required
    def list_mail_referrals(principal, mail_id):
        referrals = services.workflow.list_mail_referrals(principal, mail_id)
        return respond([r.to_dict() for r in referrals], "Referrals retrieved successfully")

    @app.route("/api/attachments/mail/<mail_id>", methods=["GET"])
    @token_required
    def list_attachments(principal, mail_id):
        attachments = services.mail.list_attachments(principal, mail_id)
        return respond([a.to_dict() for a in attachments], "Attachments retrieved successfully")
