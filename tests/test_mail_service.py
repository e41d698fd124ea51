"""
Tests for mail creation, detail and listing under the caller's scope.
"""

from datetime import date

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from mailtrack.errors import Conflict, Forbidden, InternalError, NotFound, ValidationError
from mailtrack.mail_service import check_direction
from mailtrack.models import AttachmentUpload, Direction, NewMail
from mailtrack.repositories import integrity_error
from mailtrack.schema import attachments, departments, mails


def blob(tmp_path, name, content=b"%PDF-1.4 test"):
    path = tmp_path / name
    path.write_bytes(content)
    return AttachmentUpload(str(path), name, len(content), "application/pdf")


def new_mail(direction=Direction.OUTGOING, from_id=None, to_id=None, reference="OUT-001"):
    return NewMail(reference_number=reference, mail_date=date(2024, 7, 1), subject="Budget plan",
                   direction=direction, from_department_id=from_id, to_department_id=to_id)


def count_rows(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


# ── Visibility ───────────────────────────────────────────────────────

def test_manager_mail_is_hidden_from_unrelated_head(services, org):
    mail = services.mail.create_mail(org.finance_manager, new_mail(to_id=org.finance.id))

    assert mail.uploader_id == org.finance_manager.id
    assert services.mail.list_mails(org.contracts_head).total == 0
    assert [m.id for m in services.mail.list_mails(org.admin).items] == [mail.id]
    assert [m.id for m in services.mail.list_mails(org.finance_manager).items] == [mail.id]
    assert services.mail.list_mails(org.legal_manager).total == 0


def test_out_of_scope_mail_looks_absent(services, org, make_mail):
    mail = make_mail(Direction.INCOMING, org.finance)
    for principal in (org.legal_manager, org.budget_head):
        with pytest.raises(NotFound, match="Mail not found"):
            services.mail.get_mail(principal, mail.id)
    with pytest.raises(NotFound, match="Mail not found"):
        services.mail.get_mail(org.admin, "does-not-exist")


def test_head_sees_mail_once_referred(services, org, make_mail):
    mail = make_mail(Direction.INCOMING, org.legal)
    with pytest.raises(NotFound):
        services.mail.get_mail(org.budget_head, mail.id)

    services.workflow.create_referral(org.admin, mail.id, org.budget.id)
    assert services.mail.get_mail(org.budget_head, mail.id).id == mail.id
    assert services.mail.list_mails(org.budget_head).total == 1


def test_detail_includes_names_and_attachments(services, org, make_mail, tmp_path):
    mail = make_mail(Direction.INCOMING, org.legal, uploads=[blob(tmp_path, "scan.pdf")])
    detail = services.mail.get_mail(org.legal_manager, mail.id)

    assert detail.from_department_name == "Legal"
    assert detail.to_department_name is None
    assert detail.uploader_name == org.admin.full_name
    assert [a.original_filename for a in detail.attachments] == ["scan.pdf"]
    assert detail.to_dict(with_attachments=True)["attachments"][0]["fileSize"] == len(b"%PDF-1.4 test")
    assert "filePath" not in detail.to_dict(with_attachments=True)["attachments"][0]


def test_list_attachments_scoped(services, org, make_mail, tmp_path):
    mail = make_mail(Direction.INCOMING, org.finance,
                     uploads=[blob(tmp_path, "a.pdf"), blob(tmp_path, "b.pdf")])
    assert len(services.mail.list_attachments(org.finance_manager, mail.id)) == 2
    with pytest.raises(NotFound):
        services.mail.list_attachments(org.legal_manager, mail.id)


# ── Creation ─────────────────────────────────────────────────────────

def test_create_with_attachments(services, org, engine, tmp_path):
    uploads = [blob(tmp_path, "one.pdf"), blob(tmp_path, "two.pdf")]
    mail = services.mail.create_mail(org.finance_manager, new_mail(to_id=org.finance.id), uploads)
    assert mail.attachment_count == 2
    assert count_rows(engine, attachments) == 2


def test_failed_attachment_rolls_back_mail(services, org, engine, tmp_path):
    good = blob(tmp_path, "good.pdf")
    broken = AttachmentUpload(str(tmp_path / "broken.pdf"), None, 10)

    with pytest.raises(InternalError, match="Failed to store mail attachments"):
        services.mail.create_mail(org.finance_manager, new_mail(to_id=org.finance.id), [good, broken])

    assert count_rows(engine, mails) == 0
    assert count_rows(engine, attachments) == 0
    assert services.mail.list_mails(org.admin).total == 0
    assert not (tmp_path / "good.pdf").exists()

    # the reference number was never taken
    services.mail.create_mail(org.finance_manager, new_mail(to_id=org.finance.id))


def test_duplicate_reference_is_conflict(services, org, tmp_path):
    services.mail.create_mail(org.admin, new_mail(to_id=org.finance.id, reference="DUP-1"))
    upload = blob(tmp_path, "dup.pdf")
    with pytest.raises(Conflict, match="Reference number already exists"):
        services.mail.create_mail(org.admin, new_mail(to_id=org.legal.id, reference="DUP-1"), [upload])
    assert not (tmp_path / "dup.pdf").exists()


def test_manager_cannot_create_for_other_department(services, org):
    with pytest.raises(Forbidden):
        services.mail.create_mail(org.finance_manager, new_mail(to_id=org.legal.id))


def test_head_cannot_create_mail(services, org):
    with pytest.raises(Forbidden):
        services.mail.create_mail(org.budget_head, new_mail(to_id=org.finance.id))


def test_unknown_department_is_rejected(services, org):
    with pytest.raises(ValidationError) as excinfo:
        services.mail.create_mail(org.admin, new_mail(to_id="nowhere"))
    assert "nowhere" in excinfo.value.errors[0]


def test_department_removed_after_caching_is_not_conflict(services, org, engine, tmp_path):
    archive = services.directory.create_department(org.admin, "Archive")
    assert services.directory.get_department(archive.id) is not None
    with engine.begin() as conn:
        conn.execute(delete(departments).where(departments.c.id == archive.id))

    upload = blob(tmp_path, "late.pdf")
    with pytest.raises(NotFound, match="Department or uploader not found"):
        services.mail.create_mail(org.admin, new_mail(to_id=archive.id, reference="LATE-1"), [upload])
    assert not (tmp_path / "late.pdf").exists()
    assert count_rows(engine, mails) == 0

    # the next attempt sees the refreshed reference data
    with pytest.raises(ValidationError):
        services.mail.create_mail(org.admin, new_mail(to_id=archive.id, reference="LATE-1"))


class DriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize("orig, expected", [
    (DriverError("duplicate key value", pgcode="23505"), Conflict),
    (DriverError("violates foreign key constraint", pgcode="23503"), NotFound),
    (DriverError("null value in column", pgcode="23502"), InternalError),
    (DriverError("UNIQUE constraint failed: mails.reference_number"), Conflict),
    (DriverError("FOREIGN KEY constraint failed"), NotFound),
    (DriverError("CHECK constraint failed"), InternalError),
])
def test_integrity_errors_are_told_apart(orig, expected):
    error = integrity_error(IntegrityError("INSERT", {}, orig), "taken", "gone")
    assert type(error) is expected
    if expected is Conflict:
        assert error.message == "taken"
    if expected is NotFound:
        assert error.message == "gone"


@pytest.mark.parametrize("direction, from_id, to_id", [
    (Direction.INCOMING, None, None),
    (Direction.INCOMING, "d1", "d2"),
    (Direction.INCOMING, None, "d2"),
    (Direction.OUTGOING, None, None),
    (Direction.OUTGOING, "d1", "d2"),
    (Direction.OUTGOING, "d1", None),
])
def test_direction_invariant(direction, from_id, to_id):
    with pytest.raises(ValidationError):
        check_direction(new_mail(direction, from_id, to_id))


def test_direction_invariant_accepts_valid():
    check_direction(new_mail(Direction.INCOMING, from_id="d1"))
    check_direction(new_mail(Direction.OUTGOING, to_id="d2"))
