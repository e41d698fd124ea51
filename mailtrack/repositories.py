"""
Persistence collaborators. Each repository is stateless and works on a
connection supplied by the caller, so the caller owns the transaction
boundary. Constraint violations are translated to domain errors here.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import and_, delete, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import DateTime, String, Text

from mailtrack.errors import Conflict, InternalError, MailTrackError, NotFound
from mailtrack.models import (
    Attachment,
    AttachmentUpload,
    Comment,
    Department,
    Mail,
    NewMail,
    Page,
    Referral,
    ReferralStatus,
    Section,
    User,
    utcnow,
)
from mailtrack.query_builder import (
    ScopedQuery,
    build_mail_detail_query,
    build_mail_referrals_query,
    build_referral_detail_query,
)
from mailtrack.schema import (
    attachments,
    comments,
    departments,
    mails,
    referrals,
    sections,
    users,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def integrity_error(e: IntegrityError, duplicate: str, missing: str) -> MailTrackError:
    """Translate a constraint violation into the matching domain error.

    Only a uniqueness violation is a Conflict. A foreign key that no longer
    resolves means the referenced row vanished; anything else is internal.
    """
    code = getattr(e.orig, "pgcode", None) or getattr(e.orig, "sqlstate", None)
    text = str(e.orig).upper()
    if code == UNIQUE_VIOLATION or (code is None and "UNIQUE" in text):
        return Conflict(duplicate)
    if code == FOREIGN_KEY_VIOLATION or (code is None and "FOREIGN KEY" in text):
        return NotFound(missing)
    logger.error("Unexpected integrity error: %s", e.orig)
    return InternalError()


def _paged(conn, query: ScopedQuery, factory) -> Page:
    rows = conn.execute(query.data).mappings().all()
    total = conn.execute(query.count).scalar_one()
    return Page(items=[factory(r) for r in rows], page=query.page.page,
                limit=query.page.limit, total=int(total))


class MailRepository:

    def insert(self, conn, new_mail: NewMail, uploader_id: str) -> str:
        mail_id = new_id()
        try:
            conn.execute(insert(mails).values(
                id=mail_id,
                reference_number=new_mail.reference_number,
                mail_date=new_mail.mail_date,
                subject=new_mail.subject,
                direction=new_mail.direction.value,
                from_department_id=new_mail.from_department_id,
                to_department_id=new_mail.to_department_id,
                uploader_id=uploader_id,
            ))
        except IntegrityError as e:
            logger.info("Mail insert rejected: %s", e.orig)
            raise integrity_error(e, "Reference number already exists",
                                  "Department or uploader not found")
        return mail_id

    def insert_attachment(self, conn, mail_id: str, upload: AttachmentUpload) -> str:
        attachment_id = new_id()
        conn.execute(insert(attachments).values(
            id=attachment_id,
            mail_id=mail_id,
            file_path=upload.storage_path,
            original_filename=upload.original_filename,
            file_size=upload.file_size,
            mime_type=upload.mime_type,
        ))
        return attachment_id

    def get_by_id(self, conn, principal, mail_id: str) -> Optional[Mail]:
        """Fetch one mail iff it exists AND lies in the principal's scope."""
        row = conn.execute(build_mail_detail_query(principal, mail_id)).mappings().first()
        return Mail.from_row(row) if row else None

    def query(self, conn, query: ScopedQuery) -> Page:
        return _paged(conn, query, Mail.from_row)

    def list_attachments(self, conn, mail_id: str) -> List[Attachment]:
        rows = conn.execute(
            select(attachments)
            .where(attachments.c.mail_id == mail_id)
            .order_by(attachments.c.created_at.asc(), attachments.c.id)
        ).mappings().all()
        return [Attachment.from_row(r) for r in rows]


class ReferralRepository:

    def insert(self, conn, mail_id: str, section_id: str) -> str:
        """Insert a Pending referral; the storage-level unique key arbitrates races."""
        referral_id = new_id()
        try:
            conn.execute(insert(referrals).values(
                id=referral_id,
                mail_id=mail_id,
                section_id=section_id,
                status=ReferralStatus.PENDING.value,
            ))
        except IntegrityError as e:
            logger.info("Referral insert rejected: %s", e.orig)
            raise integrity_error(e, "Referral already exists for this mail and section",
                                  "Mail or section not found")
        return referral_id

    def get_by_id(self, conn, referral_id: str) -> Optional[Referral]:
        row = conn.execute(build_referral_detail_query(referral_id)).mappings().first()
        return Referral.from_row(row) if row else None

    def query(self, conn, query: ScopedQuery) -> Page:
        return _paged(conn, query, Referral.from_row)

    def list_for_mail(self, conn, principal, mail_id: str) -> List[Referral]:
        rows = conn.execute(build_mail_referrals_query(principal, mail_id)).mappings().all()
        return [Referral.from_row(r) for r in rows]

    def update_status(self, conn, referral_id: str, status: ReferralStatus,
                      expected: Optional[ReferralStatus] = None) -> bool:
        """Set *status*; with *expected*, only if the current status still matches.

        Returns True when a row changed. The condition is evaluated by the
        UPDATE itself, so two racing callers cannot both succeed.
        """
        clause = referrals.c.id == referral_id
        if expected is not None:
            clause = and_(clause, referrals.c.status == expected.value)
        result = conn.execute(
            update(referrals).where(clause).values(status=status.value, updated_at=utcnow())
        )
        return result.rowcount == 1

    def mark_viewed(self, conn, referral_id: str) -> bool:
        return self.update_status(conn, referral_id, ReferralStatus.VIEWED,
                                  expected=ReferralStatus.PENDING)

    def delete(self, conn, referral_id: str) -> bool:
        conn.execute(delete(comments).where(comments.c.referral_id == referral_id))
        result = conn.execute(delete(referrals).where(referrals.c.id == referral_id))
        return result.rowcount == 1


class CommentRepository:

    def append_if_open(self, conn, referral_id: str, author_id: str, text: str) -> Optional[str]:
        """Append a comment unless the referral is Completed.

        The status test and the insert are one INSERT ... SELECT statement.
        Returns the new comment id, or None when nothing was inserted.
        """
        comment_id = new_id()
        source = select(
            literal(comment_id, String),
            literal(referral_id, String),
            literal(author_id, String),
            literal(text, Text),
            literal(utcnow(), DateTime(timezone=True)),
        ).select_from(referrals).where(and_(
            referrals.c.id == referral_id,
            referrals.c.status != ReferralStatus.COMPLETED.value,
        ))
        result = conn.execute(insert(comments).from_select(
            ["id", "referral_id", "user_id", "text", "created_at"], source,
        ))
        return comment_id if result.rowcount == 1 else None

    def get_by_id(self, conn, comment_id: str) -> Optional[Comment]:
        row = conn.execute(
            select(comments, users.c.full_name.label("user_name"))
            .select_from(comments.join(users, comments.c.user_id == users.c.id))
            .where(comments.c.id == comment_id)
        ).mappings().first()
        return Comment.from_row(row) if row else None

    def list_for_referral(self, conn, referral_id: str) -> List[Comment]:
        rows = conn.execute(
            select(comments, users.c.full_name.label("user_name"))
            .select_from(comments.join(users, comments.c.user_id == users.c.id))
            .where(comments.c.referral_id == referral_id)
            .order_by(comments.c.created_at.asc(), comments.c.id)
        ).mappings().all()
        return [Comment.from_row(r) for r in rows]


class ReferenceDataRepository:
    """Departments and sections."""

    def list_departments(self, conn) -> List[Department]:
        rows = conn.execute(select(departments).order_by(departments.c.name)).mappings().all()
        return [Department.from_row(r) for r in rows]

    def insert_department(self, conn, name: str) -> str:
        department_id = new_id()
        try:
            conn.execute(insert(departments).values(id=department_id, name=name))
        except IntegrityError as e:
            raise integrity_error(e, "Department name already exists", "Department not found")
        return department_id

    def rename_department(self, conn, department_id: str, name: str) -> bool:
        try:
            result = conn.execute(
                update(departments).where(departments.c.id == department_id).values(name=name)
            )
        except IntegrityError as e:
            raise integrity_error(e, "Department name already exists", "Department not found")
        return result.rowcount == 1

    def delete_department(self, conn, department_id: str) -> bool:
        result = conn.execute(delete(departments).where(departments.c.id == department_id))
        return result.rowcount == 1

    def list_sections(self, conn) -> List[Section]:
        rows = conn.execute(
            select(sections, departments.c.name.label("department_name"))
            .select_from(sections.join(departments, sections.c.department_id == departments.c.id))
            .order_by(departments.c.name, sections.c.name)
        ).mappings().all()
        return [Section.from_row(r) for r in rows]

    def insert_section(self, conn, name: str, department_id: str) -> str:
        section_id = new_id()
        try:
            conn.execute(insert(sections).values(id=section_id, name=name, department_id=department_id))
        except IntegrityError as e:
            raise integrity_error(e, "Section already exists in this department", "Department not found")
        return section_id


class UserRepository:

    def get_by_id(self, conn, user_id: str) -> Optional[User]:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        return User.from_row(row) if row else None

    def list(self, conn) -> List[User]:
        rows = conn.execute(select(users).order_by(users.c.username)).mappings().all()
        return [User.from_row(r) for r in rows]

    def insert(self, conn, username: str, password_hash: str, full_name: str, role: str,
               department_id: Optional[str] = None, section_id: Optional[str] = None) -> str:
        user_id = new_id()
        try:
            conn.execute(insert(users).values(
                id=user_id, username=username, password_hash=password_hash,
                full_name=full_name, role=role,
                department_id=department_id, section_id=section_id,
            ))
        except IntegrityError as e:
            raise integrity_error(e, "Username already exists", "Department or section not found")
        return user_id

    def update(self, conn, user_id: str, **values) -> bool:
        try:
            result = conn.execute(update(users).where(users.c.id == user_id).values(**values))
        except IntegrityError as e:
            raise integrity_error(e, "Username already exists", "Department or section not found")
        return result.rowcount == 1

    def delete(self, conn, user_id: str) -> bool:
        try:
            result = conn.execute(delete(users).where(users.c.id == user_id))
        except IntegrityError:
            raise Conflict("User still owns mail or comments and cannot be deleted")
        return result.rowcount == 1
