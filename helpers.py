"""
Shared helpers used across blueprints.
"""

from __future__ import annotations

from flask import jsonify, request
from flask_login import current_user

from errors import InvalidSetting


def current_user_id() -> int:
    """Return the current authenticated user's ID."""
    return int(current_user.id)


def json_body() -> dict:
    """Request JSON as a dict; an empty or non-object body becomes ``{}``."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_field(data: dict, name: str) -> int:
    """Read a required integer id from a JSON body."""
    value = data.get(name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidSetting(f"{name} is required") from None


def ok(data: dict, message: str = "", status: int = 200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status
