"""Progress sharing settings, group dashboard, leaderboards and study partner routes."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required
from werkzeug.exceptions import HTTPException

import group_progress
from errors import ProgressError
from extensions import limiter
from helpers import current_user_id, int_field, json_body, ok

logger = logging.getLogger(__name__)

bp = Blueprint("progress", __name__)


@bp.errorhandler(ProgressError)
def handle_progress_error(exc: ProgressError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


@bp.errorhandler(Exception)
def handle_unexpected(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({
        "success": False,
        "error": "Error",
        "message": "Something went wrong. Please try again.",
    }), 500


# ── Sharing settings ──────────────────────────────────────


@bp.route("/api/groups/<int:group_id>/progress-settings")
@login_required
def api_get_progress_settings(group_id):
    policy = group_progress.get_share_policy(current_user_id(), group_id)
    return ok({"progress_settings": policy})


@bp.route("/api/groups/<int:group_id>/progress-settings", methods=["PUT"])
@login_required
def api_update_progress_settings(group_id):
    data = json_body()
    policy = group_progress.update_share_policy(
        current_user_id(),
        group_id,
        visibility=data.get("share_settings"),
        display_preferences=data.get("display_preferences"),
    )
    return ok({"progress_settings": policy}, "Progress settings updated successfully")


# ── Dashboard & leaderboards ──────────────────────────────


@bp.route("/api/groups/<int:group_id>/progress-dashboard")
@login_required
def api_progress_dashboard(group_id):
    period = request.args.get("period", "weekly")
    return ok(group_progress.get_dashboard(group_id, current_user_id(), period))


@bp.route("/api/groups/<int:group_id>/leaderboards")
@login_required
def api_leaderboards(group_id):
    period = request.args.get("period", "weekly")
    category = request.args.get("category", "all")
    return ok(group_progress.get_leaderboards(group_id, current_user_id(), period, category))


# ── Study partners ────────────────────────────────────────


@bp.route("/api/groups/<int:group_id>/request-partnership", methods=["POST"])
@login_required
@limiter.limit("30 per hour")
def api_request_partnership(group_id):
    partner_id = int_field(json_body(), "partner_id")
    result = group_progress.request_partnership(group_id, current_user_id(), partner_id)
    message = result.pop("message")
    return ok(result, message)


@bp.route("/api/groups/<int:group_id>/respond-partnership", methods=["PUT"])
@login_required
def api_respond_partnership(group_id):
    data = json_body()
    requester_id = int_field(data, "requester_id")
    result = group_progress.respond_partnership(
        group_id, requester_id, current_user_id(), data.get("status", ""),
    )
    message = result.pop("message")
    return ok(result, message)


@bp.route("/api/groups/<int:group_id>/study-partners")
@login_required
def api_study_partners(group_id):
    return ok(group_progress.get_partners(group_id, current_user_id()))
