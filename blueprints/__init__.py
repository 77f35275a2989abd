"""
Blueprint registration for Study Group Progress.

All blueprints are registered without URL prefixes to keep existing URLs stable.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.progress import bp as progress_bp

    app.register_blueprint(progress_bp)
