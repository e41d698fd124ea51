"""
Shared fixtures: a file-backed SQLite database per test, the service
graph on top of it, and a small organisation with one account per role.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from mailtrack.api.app import build_services, create_app
from mailtrack.api.auth import generate_token
from mailtrack.database import create_schema, make_engine
from mailtrack.models import Direction, NewMail, Role
from mailtrack.rbac import principal_from_user

TEST_SECRET = "test-secret-key-12345"
PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'mailtrack.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def services(engine, tmp_path):
    return build_services(engine, str(tmp_path / "uploads"))


@pytest.fixture
def org(services):
    """Finance (Budget, Payroll) and Legal (Contracts), one account per role."""
    d = services.directory

    def account(username, role, department_id=None, section_id=None):
        user = d.create_user(None, username, PASSWORD, username.title(), role,
                             department_id=department_id, section_id=section_id)
        return principal_from_user(user)

    admin = account("admin", Role.ADMIN)
    finance = d.create_department(admin, "Finance")
    legal = d.create_department(admin, "Legal")
    budget = d.create_section(admin, "Budget", finance.id)
    payroll = d.create_section(admin, "Payroll", finance.id)
    contracts = d.create_section(admin, "Contracts", legal.id)

    return SimpleNamespace(
        admin=admin,
        finance=finance,
        legal=legal,
        budget=budget,
        payroll=payroll,
        contracts=contracts,
        finance_manager=account("fin.manager", Role.MANAGER, department_id=finance.id),
        legal_manager=account("legal.manager", Role.MANAGER, department_id=legal.id),
        budget_head=account("budget.head", Role.HEAD, section_id=budget.id),
        payroll_head=account("payroll.head", Role.HEAD, section_id=payroll.id),
        contracts_head=account("contracts.head", Role.HEAD, section_id=contracts.id),
    )


@pytest.fixture
def make_mail(services, org):
    """Create a mail as *principal* (Admin by default)."""
    counter = {"n": 0}

    def _make(direction=Direction.INCOMING, department=None, subject="General matter",
              reference=None, mail_date=date(2024, 3, 1), principal=None, uploads=None):
        counter["n"] += 1
        department = department or org.finance
        new_mail = NewMail(
            reference_number=reference or f"REF-{counter['n']:04d}",
            mail_date=mail_date,
            subject=subject,
            direction=direction,
            from_department_id=department.id if direction == Direction.INCOMING else None,
            to_department_id=department.id if direction == Direction.OUTGOING else None,
        )
        return services.mail.create_mail(principal or org.admin, new_mail, uploads)

    return _make


@pytest.fixture
def app(engine, tmp_path):
    application = create_app(engine=engine, upload_path=str(tmp_path / "uploads"),
                             secret_key=TEST_SECRET)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api_services(app):
    return app.extensions["mailtrack"]


@pytest.fixture
def auth_header():
    def _header(principal):
        return {"Authorization": f"Bearer {generate_token(principal, TEST_SECRET)}"}
    return _header
