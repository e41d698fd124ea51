"""
Role-Based Access Control – resolving principals and the access policy.

The policy is a pure function of (principal, action, resource kind,
resource). Role is the only discriminator; every role is handled in one
branch of each function so that adding a role means revisiting each of them.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Type

from sqlalchemy import and_, exists, false, or_, select, true
from sqlalchemy.sql.elements import ColumnElement
from werkzeug.security import check_password_hash

from mailtrack.errors import AuthenticationError, Forbidden, MailTrackError, NotFound
from mailtrack.models import Principal, Role, User
from mailtrack.schema import mails, referrals, users

logger = logging.getLogger(__name__)


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    COMMENT = "comment"


class ResourceKind(str, Enum):
    MAIL = "mail"
    REFERRAL = "referral"
    SECTION = "section"          # the referral queue of one section
    REFERENCE_DATA = "reference_data"
    USER = "user"


# Mail denials are folded into "not found" so that a caller cannot learn
# that a mail outside their scope exists. Everything else is addressed by
# ids already known to the caller and is refused explicitly.
DENIAL_ERRORS = {
    ResourceKind.MAIL: NotFound,
    ResourceKind.REFERRAL: Forbidden,
    ResourceKind.SECTION: Forbidden,
    ResourceKind.REFERENCE_DATA: Forbidden,
    ResourceKind.USER: Forbidden,
}

DENIAL_MESSAGES = {
    ResourceKind.MAIL: "Mail not found",
    ResourceKind.REFERRAL: "Access denied to this referral",
    ResourceKind.SECTION: "Access denied to this section",
    ResourceKind.REFERENCE_DATA: "Insufficient permissions",
    ResourceKind.USER: "Insufficient permissions",
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


# ── Principal resolution ─────────────────────────────────────────────

def check_principal(principal: Principal) -> Principal:
    """Enforce the affiliation invariants of each role."""
    if principal.role == Role.ADMIN:
        if principal.department_id is not None or principal.section_id is not None:
            raise ValueError("Admin user must not have a department or section.")
    elif principal.role == Role.MANAGER:
        if principal.department_id is None:
            raise ValueError("Manager user must have department_id set.")
        if principal.section_id is not None:
            raise ValueError("Manager user must not have section_id set.")
    elif principal.role == Role.HEAD:
        if principal.section_id is None:
            raise ValueError("Head user must have section_id set.")
        if principal.department_id is not None:
            raise ValueError("Head user must not have department_id set.")
    else:
        raise ValueError(f"Unknown role: {principal.role}")
    return principal


def principal_from_user(user: User) -> Principal:
    return check_principal(Principal(
        id=user.id,
        role=user.role,
        department_id=user.department_id,
        section_id=user.section_id,
        username=user.username,
        full_name=user.full_name,
    ))


def _user_row(conn, clause):
    stmt = select(users).where(clause)
    return conn.execute(stmt).mappings().first()


def load_principal(engine, user_id: str) -> Principal:
    """Look up a user by id (taken from a verified token) and return their Principal."""
    with engine.connect() as conn:
        row = _user_row(conn, users.c.id == user_id)

    if not row:
        raise AuthenticationError("Invalid token")
    try:
        return principal_from_user(User.from_row(row))
    except ValueError as e:
        logger.warning("User %s has an inconsistent profile: %s", user_id, e)
        raise AuthenticationError("User profile is incomplete; contact an administrator")


def authenticate_user(engine, username: str, password: str) -> Principal:
    """Verify a username/password pair and return the matching Principal."""
    with engine.connect() as conn:
        row = _user_row(conn, users.c.username == username)

    if not row or not check_password_hash(row["password_hash"], password):
        raise AuthenticationError("Invalid credentials")
    try:
        return principal_from_user(User.from_row(row))
    except ValueError as e:
        logger.warning("User %s has an inconsistent profile: %s", row["id"], e)
        raise AuthenticationError("User profile is incomplete; contact an administrator")


# ── Policy ───────────────────────────────────────────────────────────

def _mail_departments(mail: Any):
    return {mail.from_department_id, mail.to_department_id} - {None}


def _authorize_manager(principal: Principal, action: Action, kind: ResourceKind,
                       resource: Any) -> Decision:
    dept = principal.department_id

    if kind == ResourceKind.MAIL:
        if action == Action.COMMENT:
            return Decision.deny("Mail does not accept comments")
        if dept in _mail_departments(resource):
            return Decision.allow()
        return Decision.deny(f"Mail is outside department {dept}")

    if kind == ResourceKind.REFERRAL:
        # Managers are not section-scoped; a referral is theirs through its mail.
        # Creation is checked against the referred mail by the caller.
        if action == Action.CREATE:
            return Decision.allow()
        if dept in _mail_departments(resource):
            return Decision.allow()
        return Decision.deny(f"Referred mail is outside department {dept}")

    if kind == ResourceKind.SECTION:
        return Decision.allow() if action == Action.READ else Decision.deny("Read-only")

    if kind == ResourceKind.REFERENCE_DATA:
        return Decision.allow() if action == Action.READ else Decision.deny("Admin only")

    if kind == ResourceKind.USER:
        return Decision.deny("Admin only")

    raise ValueError(f"Unknown resource kind: {kind}")


def _authorize_head(principal: Principal, action: Action, kind: ResourceKind,
                    resource: Any) -> Decision:
    section = principal.section_id

    if kind == ResourceKind.MAIL:
        if action != Action.READ:
            return Decision.deny("Heads may only read mail")
        if section in resource.section_ids:
            return Decision.allow()
        return Decision.deny(f"Mail is not referred to section {section}")

    if kind == ResourceKind.REFERRAL:
        if action in (Action.CREATE, Action.DELETE):
            return Decision.deny("Heads may not create or delete referrals")
        if resource.section_id == section:
            return Decision.allow()
        return Decision.deny(f"Referral belongs to another section than {section}")

    if kind == ResourceKind.SECTION:
        if action == Action.READ and resource == section:
            return Decision.allow()
        return Decision.deny(f"Section is not {section}")

    if kind == ResourceKind.REFERENCE_DATA:
        return Decision.allow() if action == Action.READ else Decision.deny("Admin only")

    if kind == ResourceKind.USER:
        return Decision.deny("Admin only")

    raise ValueError(f"Unknown resource kind: {kind}")


def authorize(principal: Principal, action: Action, kind: ResourceKind,
              resource: Any = None) -> Decision:
    """Decide whether *principal* may perform *action* on *resource*.

    ``resource`` is a Mail/NewMail for MAIL (Heads need ``section_ids``
    loaded), a Referral for REFERRAL (Managers need its mail departments),
    a section id for SECTION, and is ignored for REFERENCE_DATA and USER.
    """
    if principal.role == Role.ADMIN:
        return Decision.allow()
    if principal.role == Role.MANAGER:
        return _authorize_manager(principal, action, kind, resource)
    if principal.role == Role.HEAD:
        return _authorize_head(principal, action, kind, resource)
    raise ValueError(f"Unknown role: {principal.role}")


def scope(principal: Principal, kind: ResourceKind,
          action: Action = Action.READ) -> ColumnElement:
    """Return the row-level predicate selecting what *principal* may see.

    The predicate is a bound SQL expression over the ``mails`` or
    ``referrals`` table and is AND-ed into every query of that kind.
    """
    if kind not in (ResourceKind.MAIL, ResourceKind.REFERRAL):
        raise ValueError(f"No row scope for resource kind: {kind}")

    if principal.role == Role.ADMIN:
        return true()

    if principal.role == Role.MANAGER:
        dept = principal.department_id
        if kind == ResourceKind.MAIL:
            return or_(mails.c.from_department_id == dept, mails.c.to_department_id == dept)
        if action == Action.CREATE:
            return true()
        referred = mails.alias("referred_mail")
        return exists(
            select(referred.c.id).where(and_(
                referred.c.id == referrals.c.mail_id,
                or_(referred.c.from_department_id == dept, referred.c.to_department_id == dept),
            ))
        )

    if principal.role == Role.HEAD:
        section = principal.section_id
        if kind == ResourceKind.MAIL:
            if action != Action.READ:
                return false()
            return exists(
                select(referrals.c.id).where(
                    and_(referrals.c.mail_id == mails.c.id, referrals.c.section_id == section)
                )
            )
        if action in (Action.CREATE, Action.DELETE):
            return false()
        return referrals.c.section_id == section

    raise ValueError(f"Unknown role: {principal.role}")


def enforce(decision: Decision, principal: Principal, kind: ResourceKind,
            resource_id: Optional[str] = None, message: Optional[str] = None,
            error: Optional[Type[MailTrackError]] = None) -> None:
    """Raise the denial error of *kind* (or *error*) when *decision* is negative."""
    if decision.allowed:
        return
    logger.info(
        "Access denied: principal=%s role=%s kind=%s resource=%s reason=%s",
        principal.id, principal.role.value, kind.value, resource_id, decision.reason,
    )
    raise (error or DENIAL_ERRORS[kind])(message or DENIAL_MESSAGES[kind])
