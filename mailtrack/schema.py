"""
Table definitions. Uniqueness and cascade rules live here, in storage, so
that concurrent writers are serialised by the database rather than by
application-level checks.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from mailtrack.models import utcnow

metadata = MetaData()

ID = String(36)

departments = Table(
    "departments", metadata,
    Column("id", ID, primary_key=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
)

sections = Table(
    "sections", metadata,
    Column("id", ID, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("department_id", ID, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    UniqueConstraint("name", "department_id", name="uq_sections_name_department"),
)

users = Table(
    "users", metadata,
    Column("id", ID, primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("full_name", String(255), nullable=False),
    Column("role", String(16), nullable=False),
    Column("department_id", ID, ForeignKey("departments.id", ondelete="SET NULL")),
    Column("section_id", ID, ForeignKey("sections.id", ondelete="SET NULL")),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint("role IN ('admin', 'manager', 'head')", name="ck_users_role"),
)

mails = Table(
    "mails", metadata,
    Column("id", ID, primary_key=True),
    Column("reference_number", String(100), nullable=False, unique=True),
    Column("mail_date", Date, nullable=False),
    Column("subject", Text, nullable=False),
    Column("direction", String(16), nullable=False),
    Column("from_department_id", ID, ForeignKey("departments.id", ondelete="SET NULL")),
    Column("to_department_id", ID, ForeignKey("departments.id", ondelete="SET NULL")),
    Column("uploader_id", ID, ForeignKey("users.id"), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint("direction IN ('incoming', 'outgoing')", name="ck_mails_direction"),
)

attachments = Table(
    "attachments", metadata,
    Column("id", ID, primary_key=True),
    Column("mail_id", ID, ForeignKey("mails.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("file_path", String(500), nullable=False),
    Column("original_filename", String(255), nullable=False),
    Column("file_size", Integer, nullable=False),
    Column("mime_type", String(100)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

referrals = Table(
    "referrals", metadata,
    Column("id", ID, primary_key=True),
    Column("mail_id", ID, ForeignKey("mails.id", ondelete="CASCADE"), nullable=False),
    Column("section_id", ID, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("status", String(16), nullable=False, default="Pending"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    UniqueConstraint("mail_id", "section_id", name="uq_referrals_mail_section"),
    CheckConstraint("status IN ('Pending', 'Viewed', 'Completed')", name="ck_referrals_status"),
)

comments = Table(
    "comments", metadata,
    Column("id", ID, primary_key=True),
    Column("referral_id", ID, ForeignKey("referrals.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_id", ID, ForeignKey("users.id"), nullable=False),
    Column("text", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
