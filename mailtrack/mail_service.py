"""
Mail listing, search, detail and creation under the caller's access scope.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from mailtrack.errors import Forbidden, InternalError, MailTrackError, NotFound, ValidationError
from mailtrack.models import (
    Attachment,
    AttachmentUpload,
    Direction,
    Mail,
    NewMail,
    Page,
    PageRequest,
    Principal,
    SearchFilters,
)
from mailtrack.query_builder import build_mail_query
from mailtrack.rbac import Action, ResourceKind, authorize, enforce
from mailtrack.repositories import MailRepository

logger = logging.getLogger(__name__)


def check_direction(new_mail: NewMail) -> None:
    """Incoming mail is characterised by its origin, outgoing by its destination."""
    if new_mail.direction == Direction.INCOMING:
        if not new_mail.from_department_id:
            raise ValidationError("Validation error", ["from_department_id: required for incoming mail"])
        if new_mail.to_department_id:
            raise ValidationError("Validation error", ["to_department_id: must be empty for incoming mail"])
    else:
        if not new_mail.to_department_id:
            raise ValidationError("Validation error", ["to_department_id: required for outgoing mail"])
        if new_mail.from_department_id:
            raise ValidationError("Validation error", ["from_department_id: must be empty for outgoing mail"])


class MailService:

    def __init__(self, engine, directory, blob_store=None):
        self.engine = engine
        self.directory = directory
        self.blob_store = blob_store
        self.mails = MailRepository()

    def list_mails(self, principal: Principal, page: Optional[PageRequest] = None) -> Page:
        return self.search_mails(principal, SearchFilters(), page)

    def search_mails(self, principal: Principal, filters: SearchFilters,
                     page: Optional[PageRequest] = None) -> Page:
        query = build_mail_query(principal, filters, page)
        with self.engine.connect() as conn:
            return self.mails.query(conn, query)

    def get_mail(self, principal: Principal, mail_id: str) -> Mail:
        """Mail detail with attachments. Absent and out-of-scope look the same."""
        with self.engine.connect() as conn:
            mail = self.mails.get_by_id(conn, principal, mail_id)
            if mail is None:
                raise NotFound("Mail not found")
            mail.attachments = self.mails.list_attachments(conn, mail_id)
        mail.attachment_count = len(mail.attachments)
        return mail

    def list_attachments(self, principal: Principal, mail_id: str) -> List[Attachment]:
        with self.engine.connect() as conn:
            if self.mails.get_by_id(conn, principal, mail_id) is None:
                raise NotFound("Mail not found or access denied")
            return self.mails.list_attachments(conn, mail_id)

    def create_mail(self, principal: Principal, new_mail: NewMail,
                    uploads: Optional[List[AttachmentUpload]] = None) -> Mail:
        """Insert the mail and all its attachment rows in one transaction.

        The uploader is always the principal. On any failure nothing is
        committed and the already-stored blobs are discarded.
        """
        uploads = list(uploads or [])
        try:
            check_direction(new_mail)
            for dept_id in (new_mail.from_department_id, new_mail.to_department_id):
                if dept_id and self.directory.get_department(dept_id) is None:
                    raise ValidationError("Validation error", [f"department {dept_id} does not exist"])
            enforce(authorize(principal, Action.CREATE, ResourceKind.MAIL, new_mail),
                    principal, ResourceKind.MAIL,
                    message="Mail must originate from or be addressed to your department",
                    error=Forbidden)

            with self.engine.begin() as conn:
                mail_id = self.mails.insert(conn, new_mail, principal.id)
                try:
                    for upload in uploads:
                        self.mails.insert_attachment(conn, mail_id, upload)
                except SQLAlchemyError as e:
                    logger.error("Attachment insert failed for mail %s: %s", mail_id, e)
                    raise InternalError("Failed to store mail attachments")
        except MailTrackError as e:
            self._discard(uploads)
            if isinstance(e, NotFound):
                # a department may have been removed since it was cached
                self.directory.invalidate()
            raise
        except Exception:
            self._discard(uploads)
            logger.exception("Create mail failed")
            raise InternalError()

        logger.info("Mail %s (%s) created by %s with %d attachment(s)",
                    mail_id, new_mail.reference_number, principal.id, len(uploads))
        return self.get_mail(principal, mail_id)

    def _discard(self, uploads: List[AttachmentUpload]) -> None:
        if self.blob_store is not None and uploads:
            self.blob_store.discard(uploads)
