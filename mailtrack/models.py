"""
Domain dataclasses used across the application.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Generic, List, Mapping, Optional, TypeVar

from mailtrack.config import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if isinstance(value, (date, datetime)) else value


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    HEAD = "head"


class Direction(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ReferralStatus(str, Enum):
    PENDING = "Pending"
    VIEWED = "Viewed"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class Principal:
    """Resolved identity and organisational scope of one caller."""
    id: str
    role: Role
    department_id: Optional[str] = None  # set iff role is MANAGER
    section_id: Optional[str] = None     # set iff role is HEAD
    username: str = ""
    full_name: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "fullName": self.full_name,
            "role": self.role.value,
            "departmentId": self.department_id,
            "sectionId": self.section_id,
        }


@dataclass
class Department:
    id: str
    name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Department":
        return cls(id=row["id"], name=row["name"],
                   created_at=row.get("created_at"), updated_at=row.get("updated_at"))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name,
                "createdAt": _iso(self.created_at), "updatedAt": _iso(self.updated_at)}


@dataclass
class Section:
    id: str
    name: str
    department_id: str
    department_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Section":
        return cls(id=row["id"], name=row["name"], department_id=row["department_id"],
                   department_name=row.get("department_name"), created_at=row.get("created_at"))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "departmentId": self.department_id,
                "departmentName": self.department_name, "createdAt": _iso(self.created_at)}


@dataclass
class User:
    id: str
    username: str
    full_name: str
    role: Role
    department_id: Optional[str] = None
    section_id: Optional[str] = None
    password_hash: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            id=row["id"], username=row["username"], full_name=row["full_name"],
            role=Role(str(row["role"]).strip().lower()),
            department_id=row.get("department_id"), section_id=row.get("section_id"),
            password_hash=row.get("password_hash"), created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        # password_hash never leaves the process
        return {
            "id": self.id, "username": self.username, "fullName": self.full_name,
            "role": self.role.value, "departmentId": self.department_id,
            "sectionId": self.section_id, "createdAt": _iso(self.created_at),
        }


@dataclass
class Attachment:
    id: str
    mail_id: str
    file_path: str
    original_filename: str
    file_size: int
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Attachment":
        return cls(
            id=row["id"], mail_id=row["mail_id"], file_path=row["file_path"],
            original_filename=row["original_filename"], file_size=row["file_size"],
            mime_type=row.get("mime_type"), created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        # the storage locator is internal
        return {
            "id": self.id, "mailId": self.mail_id, "originalFilename": self.original_filename,
            "fileSize": self.file_size, "mimeType": self.mime_type,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class AttachmentUpload:
    """An uploaded file already written to the blob store, not yet recorded."""
    storage_path: str
    original_filename: str
    file_size: int
    mime_type: Optional[str] = None


@dataclass
class NewMail:
    reference_number: str
    mail_date: date
    subject: str
    direction: Direction
    from_department_id: Optional[str] = None
    to_department_id: Optional[str] = None


@dataclass
class Mail:
    id: str
    reference_number: str
    mail_date: date
    subject: str
    direction: Direction
    from_department_id: Optional[str]
    to_department_id: Optional[str]
    uploader_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    from_department_name: Optional[str] = None
    to_department_name: Optional[str] = None
    uploader_name: Optional[str] = None
    attachment_count: int = 0
    attachments: List[Attachment] = field(default_factory=list)
    # sections this mail has been referred to; a Head's read is decided on it
    section_ids: FrozenSet[str] = frozenset()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Mail":
        return cls(
            id=row["id"],
            reference_number=row["reference_number"],
            mail_date=row["mail_date"],
            subject=row["subject"],
            direction=Direction(row["direction"]),
            from_department_id=row.get("from_department_id"),
            to_department_id=row.get("to_department_id"),
            uploader_id=row["uploader_id"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            from_department_name=row.get("from_department_name"),
            to_department_name=row.get("to_department_name"),
            uploader_name=row.get("uploader_name"),
            attachment_count=int(row.get("attachment_count") or 0),
        )

    def to_dict(self, with_attachments: bool = False) -> dict:
        data = {
            "id": self.id,
            "referenceNumber": self.reference_number,
            "mailDate": _iso(self.mail_date),
            "subject": self.subject,
            "direction": self.direction.value,
            "fromDepartmentId": self.from_department_id,
            "toDepartmentId": self.to_department_id,
            "fromDepartment": {"name": self.from_department_name} if self.from_department_name else None,
            "toDepartment": {"name": self.to_department_name} if self.to_department_name else None,
            "uploader": {"id": self.uploader_id, "fullName": self.uploader_name},
            "attachmentCount": self.attachment_count,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if with_attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        return data


@dataclass
class Referral:
    id: str
    mail_id: str
    section_id: str
    status: ReferralStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reference_number: Optional[str] = None
    subject: Optional[str] = None
    mail_date: Optional[date] = None
    section_name: Optional[str] = None
    department_name: Optional[str] = None
    comment_count: Optional[int] = None
    # departments of the referred mail; a Manager's access is decided on them
    from_department_id: Optional[str] = None
    to_department_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Referral":
        count = row.get("comment_count")
        return cls(
            id=row["id"], mail_id=row["mail_id"], section_id=row["section_id"],
            status=ReferralStatus(row["status"]),
            created_at=row.get("created_at"), updated_at=row.get("updated_at"),
            reference_number=row.get("reference_number"), subject=row.get("subject"),
            mail_date=row.get("mail_date"), section_name=row.get("section_name"),
            department_name=row.get("department_name"),
            comment_count=int(count) if count is not None else None,
            from_department_id=row.get("from_department_id"),
            to_department_id=row.get("to_department_id"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "mailId": self.mail_id,
            "sectionId": self.section_id,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "referenceNumber": self.reference_number,
            "subject": self.subject,
            "mailDate": _iso(self.mail_date),
            "sectionName": self.section_name,
            "departmentName": self.department_name,
        }
        if self.comment_count is not None:
            data["commentCount"] = self.comment_count
        return data


@dataclass
class Comment:
    id: str
    referral_id: str
    user_id: str
    text: str
    created_at: Optional[datetime] = None
    user_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Comment":
        return cls(id=row["id"], referral_id=row["referral_id"], user_id=row["user_id"],
                   text=row["text"], created_at=row.get("created_at"),
                   user_name=row.get("user_name"))

    def to_dict(self) -> dict:
        return {"id": self.id, "referralId": self.referral_id, "userId": self.user_id,
                "text": self.text, "createdAt": _iso(self.created_at),
                "user": {"fullName": self.user_name}}


@dataclass
class SearchFilters:
    """Optional mail search predicates; every field set narrows the result."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    department_id: Optional[str] = None
    reference_number: Optional[str] = None  # case-insensitive substring
    subject: Optional[str] = None           # case-insensitive substring
    direction: Optional[Direction] = None


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @classmethod
    def of(cls, page: Optional[int] = None, limit: Optional[int] = None) -> "PageRequest":
        """Build a page request with both values clamped into range."""
        page = page if page is not None else DEFAULT_PAGE
        limit = limit if limit is not None else DEFAULT_LIMIT
        return cls(page=max(1, page), limit=min(max(1, limit), MAX_LIMIT))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def meta(self) -> dict:
        return {"page": self.page, "limit": self.limit,
                "total": self.total, "totalPages": self.total_pages}
