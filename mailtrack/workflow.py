"""
Referral lifecycle: creation, status transitions, deletion and discussion.

Status only moves forward::

    Pending ──► Viewed ──► Completed
       └──────────────────────▲

The first read of a Pending referral by the Head of its section marks it
Viewed. Every transition is a conditional UPDATE on the expected current
status, so concurrent callers cannot double-apply or undo one another.
"""

import logging
from typing import Dict, FrozenSet, List, Optional

from mailtrack.errors import Conflict, NotFound, ValidationError
from mailtrack.models import (
    Comment,
    Page,
    PageRequest,
    Principal,
    Referral,
    ReferralStatus,
    Role,
)
from mailtrack.query_builder import build_section_referrals_query
from mailtrack.rbac import Action, ResourceKind, authorize, enforce
from mailtrack.repositories import CommentRepository, MailRepository, ReferralRepository

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000

TRANSITIONS: Dict[ReferralStatus, FrozenSet[ReferralStatus]] = {
    ReferralStatus.PENDING: frozenset({ReferralStatus.VIEWED, ReferralStatus.COMPLETED}),
    ReferralStatus.VIEWED: frozenset({ReferralStatus.COMPLETED}),
    ReferralStatus.COMPLETED: frozenset(),
}


def can_transition(current: ReferralStatus, target: ReferralStatus) -> bool:
    return target in TRANSITIONS[current]


class ReferralWorkflow:

    def __init__(self, engine, directory):
        self.engine = engine
        self.directory = directory
        self.mails = MailRepository()
        self.referrals = ReferralRepository()
        self.comments = CommentRepository()

    def _load(self, conn, principal: Principal, referral_id: str, action: Action) -> Referral:
        """Existence first, then ownership: a foreign referral is Forbidden, not hidden."""
        referral = self.referrals.get_by_id(conn, referral_id)
        if referral is None:
            raise NotFound("Referral not found")
        enforce(authorize(principal, action, ResourceKind.REFERRAL, referral),
                principal, ResourceKind.REFERRAL, resource_id=referral_id)
        return referral

    # ── Queries ──────────────────────────────────────────────────────

    def list_section_referrals(self, principal: Principal, section_id: str,
                               page: Optional[PageRequest] = None,
                               status: Optional[ReferralStatus] = None) -> Page:
        enforce(authorize(principal, Action.READ, ResourceKind.SECTION, section_id),
                principal, ResourceKind.SECTION, resource_id=section_id)
        if self.directory.get_section(section_id) is None:
            raise NotFound("Section not found")
        query = build_section_referrals_query(principal, section_id, page, status)
        with self.engine.connect() as conn:
            return self.referrals.query(conn, query)

    def list_mail_referrals(self, principal: Principal, mail_id: str) -> List[Referral]:
        with self.engine.connect() as conn:
            if self.mails.get_by_id(conn, principal, mail_id) is None:
                raise NotFound("Mail not found")
            return self.referrals.list_for_mail(conn, principal, mail_id)

    def get_referral(self, principal: Principal, referral_id: str) -> Referral:
        """Read a referral; the owning Head's first read advances Pending to Viewed."""
        with self.engine.begin() as conn:
            referral = self._load(conn, principal, referral_id, Action.READ)
            if principal.role == Role.HEAD and referral.status == ReferralStatus.PENDING:
                if self.referrals.mark_viewed(conn, referral_id):
                    logger.info("Referral %s marked Viewed by %s", referral_id, principal.id)
                referral = self.referrals.get_by_id(conn, referral_id)
        return referral

    # ── Commands ─────────────────────────────────────────────────────

    def create_referral(self, principal: Principal, mail_id: str, section_id: str) -> Referral:
        enforce(authorize(principal, Action.CREATE, ResourceKind.REFERRAL),
                principal, ResourceKind.REFERRAL,
                message="Insufficient permissions")
        if self.directory.get_section(section_id) is None:
            raise NotFound("Section not found")

        try:
            with self.engine.begin() as conn:
                if self.mails.get_by_id(conn, principal, mail_id) is None:
                    raise NotFound("Mail not found")
                referral_id = self.referrals.insert(conn, mail_id, section_id)
                referral = self.referrals.get_by_id(conn, referral_id)
        except NotFound:
            # the section may have been removed since it was cached
            self.directory.invalidate()
            raise

        logger.info("Referral %s created: mail=%s section=%s by %s",
                    referral_id, mail_id, section_id, principal.id)
        return referral

    def update_status(self, principal: Principal, referral_id: str,
                      status: ReferralStatus) -> Referral:
        with self.engine.begin() as conn:
            referral = self._load(conn, principal, referral_id, Action.UPDATE)
            current = referral.status
            if status == current:
                return referral
            if not can_transition(current, status):
                raise ValidationError(
                    f"Cannot change referral status from {current.value} to {status.value}",
                    [f"status: allowed from {current.value}: "
                     + (", ".join(sorted(s.value for s in TRANSITIONS[current])) or "none")],
                )
            if not self.referrals.update_status(conn, referral_id, status, expected=current):
                raise Conflict("Referral status was changed concurrently; reload and retry")
            referral = self.referrals.get_by_id(conn, referral_id)

        logger.info("Referral %s status %s -> %s by %s",
                    referral_id, current.value, status.value, principal.id)
        return referral

    def delete_referral(self, principal: Principal, referral_id: str) -> None:
        """Remove a referral and its comments (Admin/Manager)."""
        with self.engine.begin() as conn:
            self._load(conn, principal, referral_id, Action.DELETE)
            self.referrals.delete(conn, referral_id)
        logger.info("Referral %s deleted by %s", referral_id, principal.id)

    # ── Discussion ───────────────────────────────────────────────────

    def list_comments(self, principal: Principal, referral_id: str) -> List[Comment]:
        with self.engine.connect() as conn:
            self._load(conn, principal, referral_id, Action.READ)
            return self.comments.list_for_referral(conn, referral_id)

    def add_comment(self, principal: Principal, referral_id: str, text: str) -> Comment:
        """Append a comment authored by *principal*; closed once the referral is Completed."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("Validation error", ["text: must not be empty"])
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError("Validation error",
                                  [f"text: must be at most {MAX_COMMENT_LENGTH} characters"])

        with self.engine.begin() as conn:
            referral = self._load(conn, principal, referral_id, Action.COMMENT)
            comment_id = self.comments.append_if_open(conn, referral.id, principal.id, text)
            if comment_id is None:
                raise ValidationError("Comments are closed on completed referrals")
            comment = self.comments.get_by_id(conn, comment_id)
        return comment
