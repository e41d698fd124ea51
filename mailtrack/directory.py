"""
Organisational reference data (departments, sections) and user accounts.

Departments and sections are read on almost every request and written
rarely, so they are served from a process-local read-through cache that is
dropped after every committed write.
"""

import logging
import threading
from typing import Dict, List, Optional

from werkzeug.security import generate_password_hash

from mailtrack.errors import NotFound, ValidationError
from mailtrack.models import Department, Principal, Role, Section, User
from mailtrack.rbac import Action, ResourceKind, authorize, check_principal, enforce
from mailtrack.repositories import ReferenceDataRepository, UserRepository

logger = logging.getLogger(__name__)


class DirectoryService:

    def __init__(self, engine):
        self.engine = engine
        self.reference = ReferenceDataRepository()
        self.users = UserRepository()
        self._lock = threading.Lock()
        self._departments: Optional[Dict[str, Department]] = None
        self._sections: Optional[Dict[str, Section]] = None

    # ── Cache ────────────────────────────────────────────────────────

    def invalidate(self) -> None:
        with self._lock:
            self._departments = None
            self._sections = None

    def _load(self):
        with self._lock:
            if self._departments is None or self._sections is None:
                with self.engine.connect() as conn:
                    self._departments = {d.id: d for d in self.reference.list_departments(conn)}
                    self._sections = {s.id: s for s in self.reference.list_sections(conn)}
                logger.debug("Reference cache loaded: %d departments, %d sections",
                             len(self._departments), len(self._sections))
            return self._departments, self._sections

    def get_department(self, department_id: str) -> Optional[Department]:
        return self._load()[0].get(department_id)

    def get_section(self, section_id: str) -> Optional[Section]:
        return self._load()[1].get(section_id)

    # ── Departments ──────────────────────────────────────────────────

    def list_departments(self, principal: Principal) -> List[Department]:
        enforce(authorize(principal, Action.READ, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        return sorted(self._load()[0].values(), key=lambda d: d.name)

    def create_department(self, principal: Principal, name: str) -> Department:
        enforce(authorize(principal, Action.CREATE, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        with self.engine.begin() as conn:
            department_id = self.reference.insert_department(conn, name)
        self.invalidate()
        logger.info("Department %s (%s) created by %s", department_id, name, principal.id)
        return self.get_department(department_id)

    def rename_department(self, principal: Principal, department_id: str, name: str) -> Department:
        enforce(authorize(principal, Action.UPDATE, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        with self.engine.begin() as conn:
            found = self.reference.rename_department(conn, department_id, name)
        if not found:
            raise NotFound("Department not found")
        self.invalidate()
        return self.get_department(department_id)

    def delete_department(self, principal: Principal, department_id: str) -> None:
        enforce(authorize(principal, Action.DELETE, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        with self.engine.begin() as conn:
            found = self.reference.delete_department(conn, department_id)
        if not found:
            raise NotFound("Department not found")
        self.invalidate()
        logger.info("Department %s deleted by %s", department_id, principal.id)

    # ── Sections ─────────────────────────────────────────────────────

    def list_sections(self, principal: Principal, department_id: Optional[str] = None) -> List[Section]:
        enforce(authorize(principal, Action.READ, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        if department_id is not None and self.get_department(department_id) is None:
            raise NotFound("Department not found")
        result = [s for s in self._load()[1].values()
                  if department_id is None or s.department_id == department_id]
        return sorted(result, key=lambda s: (s.department_name or "", s.name))

    def create_section(self, principal: Principal, name: str, department_id: str) -> Section:
        enforce(authorize(principal, Action.CREATE, ResourceKind.REFERENCE_DATA),
                principal, ResourceKind.REFERENCE_DATA)
        if self.get_department(department_id) is None:
            raise ValidationError("Validation error", ["department_id: department does not exist"])
        with self.engine.begin() as conn:
            section_id = self.reference.insert_section(conn, name, department_id)
        self.invalidate()
        return self.get_section(section_id)

    # ── Users ────────────────────────────────────────────────────────

    def _check_affiliation(self, role: Role, department_id: Optional[str],
                           section_id: Optional[str]) -> None:
        try:
            check_principal(Principal(id="", role=role, department_id=department_id,
                                      section_id=section_id))
        except ValueError as e:
            raise ValidationError("Validation error", [str(e)])
        if department_id is not None and self.get_department(department_id) is None:
            raise ValidationError("Validation error", ["department_id: department does not exist"])
        if section_id is not None and self.get_section(section_id) is None:
            raise ValidationError("Validation error", ["section_id: section does not exist"])

    def list_users(self, principal: Principal) -> List[User]:
        enforce(authorize(principal, Action.READ, ResourceKind.USER), principal, ResourceKind.USER)
        with self.engine.connect() as conn:
            return self.users.list(conn)

    def create_user(self, principal: Optional[Principal], username: str, password: str,
                    full_name: str, role: Role, department_id: Optional[str] = None,
                    section_id: Optional[str] = None) -> User:
        """Create an account. ``principal=None`` is the bootstrap path used by scripts."""
        if principal is not None:
            enforce(authorize(principal, Action.CREATE, ResourceKind.USER), principal, ResourceKind.USER)
        self._check_affiliation(role, department_id, section_id)

        with self.engine.begin() as conn:
            user_id = self.users.insert(
                conn, username, generate_password_hash(password), full_name, role.value,
                department_id=department_id, section_id=section_id,
            )
            user = self.users.get_by_id(conn, user_id)
        logger.info("User %s (%s, %s) created", user_id, username, role.value)
        return user

    def update_user(self, principal: Principal, user_id: str, username: str, full_name: str,
                    role: Role, department_id: Optional[str] = None,
                    section_id: Optional[str] = None, password: Optional[str] = None) -> User:
        """Replace an account's profile; the password changes only when given."""
        enforce(authorize(principal, Action.UPDATE, ResourceKind.USER), principal, ResourceKind.USER)
        self._check_affiliation(role, department_id, section_id)

        values = dict(username=username, full_name=full_name, role=role.value,
                      department_id=department_id, section_id=section_id)
        if password:
            values["password_hash"] = generate_password_hash(password)

        with self.engine.begin() as conn:
            if not self.users.update(conn, user_id, **values):
                raise NotFound("User not found")
            user = self.users.get_by_id(conn, user_id)
        logger.info("User %s (%s, %s) updated by %s%s", user_id, username, role.value,
                    principal.id, " with new password" if password else "")
        return user

    def delete_user(self, principal: Principal, user_id: str) -> None:
        enforce(authorize(principal, Action.DELETE, ResourceKind.USER), principal, ResourceKind.USER)
        if user_id == principal.id:
            raise ValidationError("Validation error", ["id: you cannot delete your own account"])
        with self.engine.begin() as conn:
            found = self.users.delete(conn, user_id)
        if not found:
            raise NotFound("User not found")
