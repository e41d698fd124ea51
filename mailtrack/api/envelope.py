"""
Response envelope shared by all endpoints:
``{success, message, data, meta?}``.
"""

from typing import Any, Optional

from flask import jsonify, request

from mailtrack.errors import ValidationError
from mailtrack.models import Page


def respond(data: Any = None, message: str = "", status: int = 200, meta: Optional[dict] = None):
    body = {"success": True, "message": message, "data": data}
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def respond_page(page: Page, message: str):
    return respond([item.to_dict() for item in page.items], message, meta=page.meta())


def json_body() -> dict:
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Validation error", ["body: a JSON object is required"])
    return data
