"""
Reference data and user administration endpoints.
"""

from mailtrack.api.auth import token_required
from mailtrack.api.envelope import json_body, respond
from mailtrack.validation import (
    DepartmentRequest,
    SectionRequest,
    UserCreateRequest,
    UserUpdateRequest,
    parse,
)


def register_admin_routes(app, services):
    directory = services.directory

    # ── Departments ──────────────────────────────────────────────────

    @app.route("/api/admin/departments", methods=["GET"])
    @token_required
    def list_departments(principal):
        departments = directory.list_departments(principal)
        return respond([d.to_dict() for d in departments], "Departments retrieved successfully")

    @app.route("/api/admin/departments", methods=["POST"])
    @token_required
    def create_department(principal):
        body = parse(DepartmentRequest, json_body())
        department = directory.create_department(principal, body.name)
        return respond(department.to_dict(), "Department created successfully", status=201)

    @app.route("/api/admin/departments/<department_id>", methods=["PUT"])
    @token_required
    def update_department(principal, department_id):
        body = parse(DepartmentRequest, json_body())
        department = directory.rename_department(principal, department_id, body.name)
        return respond(department.to_dict(), "Department updated successfully")

    @app.route("/api/admin/departments/<department_id>", methods=["DELETE"])
    @token_required
    def delete_department(principal, department_id):
        directory.delete_department(principal, department_id)
        return respond(None, "Department deleted successfully")

    # ── Sections ─────────────────────────────────────────────────────

    @app.route("/api/admin/sections", methods=["GET"])
    @token_required
    def list_sections(principal):
        sections = directory.list_sections(principal)
        return respond([s.to_dict() for s in sections], "Sections retrieved successfully")

    @app.route("/api/admin/departments/<department_id>/sections", methods=["GET"])
    @token_required
    def list_department_sections(principal, department_id):
        sections = directory.list_sections(principal, department_id)
        return respond([s.to_dict() for s in sections], "Sections retrieved successfully")

    @app.route("/api/admin/sections", methods=["POST"])
    @token_required
    def create_section(principal):
        body = parse(SectionRequest, json_body())
        section = directory.create_section(principal, body.name, body.department_id)
        return respond(section.to_dict(), "Section created successfully", status=201)

    # ── Users ────────────────────────────────────────────────────────

    @app.route("/api/admin/users", methods=["GET"])
    @token_required
    def list_users(principal):
        users = directory.list_users(principal)
        return respond([u.to_dict() for u in users], "Users retrieved successfully")

    @app.route("/api/admin/users", methods=["POST"])
    @token_required
    def create_user(principal):
        body = parse(UserCreateRequest, json_body())
        user = directory.create_user(
            principal, body.username, body.password, body.full_name, body.role,
            department_id=body.department_id, section_id=body.section_id,
        )
        return respond(user.to_dict(), "User created successfully", status=201)

    @app.route("/api/admin/users/<user_id>", methods=["PUT"])
    @token_required
    def update_user(principal, user_id):
        body = parse(UserUpdateRequest, json_body())
        user = directory.update_user(
            principal, user_id, body.username, body.full_name, body.role,
            department_id=body.department_id, section_id=body.section_id, password=body.password,
        )
        return respond(user.to_dict(), "User updated successfully")

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @token_required
    def delete_user(principal, user_id):
        directory.delete_user(principal, user_id)
        return respond(None, "User deleted successfully")
