"""
Request payload models. Every inbound body or query string is parsed here
before it reaches a service; failures become ValidationError with one
message per offending field.
"""

from datetime import date
from typing import Any, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mailtrack.config import DEFAULT_LIMIT, DEFAULT_PAGE
from mailtrack.errors import ValidationError
from mailtrack.models import Direction, NewMail, PageRequest, ReferralStatus, Role, SearchFilters

M = TypeVar("M", bound=BaseModel)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RequestModel(BaseModel):
    # clients send camelCase, snake_case is accepted too
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              str_strip_whitespace=True, extra="ignore")


class LoginRequest(RequestModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)


class MailCreateRequest(RequestModel):
    reference_number: str = Field(..., min_length=1, max_length=100)
    mail_date: date
    subject: str = Field(..., min_length=1, max_length=1000)
    direction: Direction
    from_department_id: Optional[str] = None
    to_department_id: Optional[str] = None

    @field_validator("from_department_id", "to_department_id", mode="before")
    @classmethod
    def blank_ids_to_none(cls, value):
        return _blank_to_none(value)

    @field_validator("direction", mode="before")
    @classmethod
    def lower_direction(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    def to_new_mail(self) -> NewMail:
        return NewMail(
            reference_number=self.reference_number,
            mail_date=self.mail_date,
            subject=self.subject,
            direction=self.direction,
            from_department_id=self.from_department_id,
            to_department_id=self.to_department_id,
        )


class SearchRequest(RequestModel):
    date_from: Optional[date] = Field(None, alias="dateFrom")
    date_to: Optional[date] = Field(None, alias="dateTo")
    department_id: Optional[str] = Field(None, alias="departmentId")
    reference_number: Optional[str] = Field(None, alias="referenceNumber", max_length=100)
    subject: Optional[str] = Field(None, max_length=1000)
    direction: Optional[Direction] = None

    @field_validator(
        "date_from", "date_to", "department_id", "reference_number", "subject", "direction",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    @field_validator("direction", mode="before")
    @classmethod
    def lower_direction(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def check_date_order(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            date_from=self.date_from,
            date_to=self.date_to,
            department_id=self.department_id,
            reference_number=self.reference_number,
            subject=self.subject,
            direction=self.direction,
        )


class ReferralCreateRequest(RequestModel):
    mail_id: str = Field(..., alias="mailId", min_length=1)
    section_id: str = Field(..., alias="sectionId", min_length=1)


class StatusUpdateRequest(RequestModel):
    status: ReferralStatus


class CommentCreateRequest(RequestModel):
    text: str = Field(..., min_length=1, max_length=1000)


class DepartmentRequest(RequestModel):
    name: str = Field(..., min_length=2, max_length=255)


class SectionRequest(RequestModel):
    name: str = Field(..., min_length=2, max_length=255)
    department_id: str = Field(..., min_length=1)


class UserCreateRequest(RequestModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2, max_length=255)
    role: Role
    department_id: Optional[str] = None
    section_id: Optional[str] = None

    @field_validator("department_id", "section_id", mode="before")
    @classmethod
    def blank_ids_to_none(cls, value):
        return _blank_to_none(value)


class UserUpdateRequest(UserCreateRequest):
    password: Optional[str] = Field(None, min_length=6)

    @field_validator("password", mode="before")
    @classmethod
    def blank_password_to_none(cls, value):
        return _blank_to_none(value)


def _field_messages(exc: PydanticValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return messages


def parse(model: Type[M], data: Optional[Mapping[str, Any]]) -> M:
    """Validate *data* against *model*, raising ValidationError on failure."""
    if data is None:
        raise ValidationError("Validation error", ["body: a JSON object is required"])
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as e:
        raise ValidationError("Validation error", _field_messages(e))


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_page(args: Mapping[str, Any]) -> PageRequest:
    """Read ``page``/``limit`` query arguments; junk falls back to defaults, then clamps."""
    return PageRequest.of(_to_int(args.get("page"), DEFAULT_PAGE),
                          _to_int(args.get("limit"), DEFAULT_LIMIT))
