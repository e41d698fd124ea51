"""
Scoped, parameterised query construction for mail listing/search and
referral queues.

Every query is assembled from typed SQLAlchemy clauses. The caller's access
scope is always the first predicate and optional filters are AND-ed after
it, so adding a filter can only narrow the result. Data and count
statements of one query share a single predicate list.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from mailtrack.models import PageRequest, Principal, ReferralStatus, SearchFilters
from mailtrack.rbac import ResourceKind, scope
from mailtrack.schema import attachments, comments, departments, mails, referrals, sections, users


@dataclass
class ScopedQuery:
    predicates: List[ColumnElement]
    data: Select
    count: Select
    page: PageRequest


# ── Mail ─────────────────────────────────────────────────────────────

def filter_predicates(filters: SearchFilters) -> List[ColumnElement]:
    """Translate optional search filters into bound predicates over ``mails``."""
    clauses = []
    if filters.date_from is not None:
        clauses.append(mails.c.mail_date >= filters.date_from)
    if filters.date_to is not None:
        clauses.append(mails.c.mail_date <= filters.date_to)
    if filters.department_id:
        clauses.append(or_(
            mails.c.from_department_id == filters.department_id,
            mails.c.to_department_id == filters.department_id,
        ))
    if filters.reference_number:
        # autoescape keeps user-supplied % and _ literal
        clauses.append(mails.c.reference_number.icontains(filters.reference_number, autoescape=True))
    if filters.subject:
        clauses.append(mails.c.subject.icontains(filters.subject, autoescape=True))
    if filters.direction is not None:
        clauses.append(mails.c.direction == filters.direction.value)
    return clauses


def mail_predicates(principal: Principal, filters: Optional[SearchFilters] = None) -> List[ColumnElement]:
    return [scope(principal, ResourceKind.MAIL)] + filter_predicates(filters or SearchFilters())


def _mail_select():
    from_dept = departments.alias("fd")
    to_dept = departments.alias("td")
    joined = (
        mails.outerjoin(from_dept, mails.c.from_department_id == from_dept.c.id)
        .outerjoin(to_dept, mails.c.to_department_id == to_dept.c.id)
        .outerjoin(users, mails.c.uploader_id == users.c.id)
    )
    columns = [
        mails,
        from_dept.c.name.label("from_department_name"),
        to_dept.c.name.label("to_department_name"),
        users.c.full_name.label("uploader_name"),
    ]
    group = [mails.c.id, from_dept.c.name, to_dept.c.name, users.c.full_name]
    return joined, columns, group


def build_mail_query(principal: Principal, filters: Optional[SearchFilters] = None,
                     page: Optional[PageRequest] = None) -> ScopedQuery:
    """Build the paged data query and its COUNT twin for the caller's mail."""
    page = page or PageRequest.of()
    predicates = mail_predicates(principal, filters)

    joined, columns, group = _mail_select()
    data = (
        select(*columns, func.count(attachments.c.id).label("attachment_count"))
        .select_from(joined.outerjoin(attachments, attachments.c.mail_id == mails.c.id))
        .where(and_(*predicates))
        .group_by(*group)
        .order_by(mails.c.created_at.desc(), mails.c.id)
        .limit(page.limit)
        .offset(page.offset)
    )
    count = select(func.count()).select_from(mails).where(and_(*predicates))
    return ScopedQuery(predicates=predicates, data=data, count=count, page=page)


def build_mail_detail_query(principal: Principal, mail_id: str) -> Select:
    """Single-mail lookup with the scope folded into the existence predicate."""
    joined, columns, _ = _mail_select()
    return (
        select(*columns)
        .select_from(joined)
        .where(and_(mails.c.id == mail_id, scope(principal, ResourceKind.MAIL)))
    )


# ── Referrals ────────────────────────────────────────────────────────

def _referral_select():
    joined = (
        referrals.join(mails, referrals.c.mail_id == mails.c.id)
        .join(sections, referrals.c.section_id == sections.c.id)
        .join(departments, sections.c.department_id == departments.c.id)
    )
    columns = [
        referrals,
        mails.c.reference_number,
        mails.c.subject,
        mails.c.mail_date,
        mails.c.from_department_id,
        mails.c.to_department_id,
        sections.c.name.label("section_name"),
        departments.c.name.label("department_name"),
    ]
    group = [referrals.c.id, mails.c.reference_number, mails.c.subject, mails.c.mail_date,
             mails.c.from_department_id, mails.c.to_department_id,
             sections.c.name, departments.c.name]
    return joined, columns, group


def build_referral_detail_query(referral_id: str) -> Select:
    joined, columns, _ = _referral_select()
    return select(*columns).select_from(joined).where(referrals.c.id == referral_id)


def build_section_referrals_query(principal: Principal, section_id: str,
                                  page: Optional[PageRequest] = None,
                                  status: Optional[ReferralStatus] = None) -> ScopedQuery:
    """Referral queue of one section as the caller may see it, newest first."""
    page = page or PageRequest.of()
    predicates = [scope(principal, ResourceKind.REFERRAL), referrals.c.section_id == section_id]
    if status is not None:
        predicates.append(referrals.c.status == status.value)

    joined, columns, group = _referral_select()
    data = (
        select(*columns, func.count(comments.c.id).label("comment_count"))
        .select_from(joined.outerjoin(comments, comments.c.referral_id == referrals.c.id))
        .where(and_(*predicates))
        .group_by(*group)
        .order_by(referrals.c.created_at.desc(), referrals.c.id)
        .limit(page.limit)
        .offset(page.offset)
    )
    count = select(func.count()).select_from(referrals).where(and_(*predicates))
    return ScopedQuery(predicates=predicates, data=data, count=count, page=page)


def build_mail_referrals_query(principal: Principal, mail_id: str) -> Select:
    """Referrals of one mail that the caller may see."""
    joined, columns, group = _referral_select()
    return (
        select(*columns, func.count(comments.c.id).label("comment_count"))
        .select_from(joined.outerjoin(comments, comments.c.referral_id == referrals.c.id))
        .where(and_(referrals.c.mail_id == mail_id, scope(principal, ResourceKind.REFERRAL)))
        .group_by(*group)
        .order_by(referrals.c.created_at.asc(), referrals.c.id)
    )
