"""
User Authentication — Flask-Login wiring.

Sessions are issued by the platform's account service; this app only loads
the logged-in user from the shared users table and rejects anonymous API
calls with a JSON 401.
"""

from __future__ import annotations

from flask import jsonify
from flask_login import LoginManager, UserMixin

from database import get_db

login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, email: str, role: str = "student"):
        self.id = id
        self.name = name
        self.email = email
        self.role = role

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute("SELECT id, name, email, role FROM users WHERE id = ?", (user_id,)).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], row["role"])
        return None


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "error": "Unauthorized", "message": "Login required."}), 401
