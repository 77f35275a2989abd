"""
Group Progress — the operations behind the progress-sharing API.

Each function checks that the caller is an active member of the group, then
delegates to the stats cache, the visibility filter or the partnership
workflow. Failures are raised as ``errors.ProgressError`` subclasses.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime

from flask import current_app

from audit import log_event
from db_stores import MemberDirectoryDB, SharePolicyStoreDB, StudyGroupStoreDB, StudySessionStoreDB
from errors import InvalidPeriod, InvalidSetting, NotFound, NotMember, UpstreamUnavailable
from group_analytics import personal_stats, resolve_window
from models import DataCategory, DisplayPreferences, LeaderboardType, PartnershipStatus, PeriodType, Visibility
from partnerships import PartnershipManager
from privacy import filter_leaderboards, member_progress_view
from stats_cache import StatsCache


logger = logging.getLogger(__name__)

_DISPLAY_FIELDS = {f.name for f in fields(DisplayPreferences)}


def _stats_cache() -> StatsCache:
    return StatsCache(
        max_age_hours=current_app.config.get("STATS_MAX_AGE_HOURS", 1),
        leaderboard_size=current_app.config.get("LEADERBOARD_SIZE", 10),
    )


def _partnerships() -> PartnershipManager:
    return PartnershipManager(
        write_attempts=current_app.config.get("PARTNERSHIP_WRITE_ATTEMPTS", 3),
    )


def parse_period(period: str | PeriodType) -> PeriodType:
    try:
        return PeriodType(period)
    except ValueError:
        raise InvalidPeriod() from None


def parse_leaderboard(category: str | None) -> LeaderboardType | None:
    """``None`` or ``"all"`` selects every board."""
    if not category or category == "all":
        return None
    try:
        return LeaderboardType(category)
    except ValueError:
        raise InvalidSetting(f"Unknown leaderboard category: {category}") from None


def require_member(group_id: int, user_id: int) -> None:
    if StudyGroupStoreDB.get(group_id) is None:
        raise NotFound()
    if not StudyGroupStoreDB.is_active_member(group_id, user_id):
        raise NotMember()


# ── Share policy ───────────────────────────────────────────


def get_share_policy(user_id: int, group_id: int) -> dict:
    require_member(group_id, user_id)
    return SharePolicyStoreDB.get_or_create(user_id, group_id).to_dict()


def update_share_policy(user_id: int, group_id: int, visibility: dict | None = None,
                        display_preferences: dict | None = None) -> dict:
    """Merge the given settings into the user's policy. Unmentioned keys keep their value."""
    require_member(group_id, user_id)
    for name, value in (("share_settings", visibility), ("display_preferences", display_preferences)):
        if value is not None and not isinstance(value, dict):
            raise InvalidSetting(f"{name} must be an object")

    changes: dict[DataCategory, Visibility] = {}
    for key, value in (visibility or {}).items():
        try:
            changes[DataCategory(key)] = Visibility(value)
        except ValueError:
            raise InvalidSetting(f"Invalid sharing setting {key}={value}") from None
    for key, value in (display_preferences or {}).items():
        if key not in _DISPLAY_FIELDS or not isinstance(value, bool):
            raise InvalidSetting(f"Invalid display preference {key}={value}")

    policy = SharePolicyStoreDB.get_or_create(user_id, group_id)
    policy.visibility.update(changes)
    for key, value in (display_preferences or {}).items():
        setattr(policy.display_preferences, key, value)
    SharePolicyStoreDB.save_settings(policy)

    log_event("share_policy_updated", user_id,
              f"group={group_id} " + ",".join(f"{c.value}={v.value}" for c, v in changes.items()))
    return SharePolicyStoreDB.get(user_id, group_id).to_dict()


# ── Stats ──────────────────────────────────────────────────


def get_dashboard(group_id: int, viewer_id: int, period: str = "weekly",
                  now: datetime | None = None) -> dict:
    require_member(group_id, viewer_id)
    period_type = parse_period(period)
    now = now or datetime.now()

    snapshot, stale = _stats_cache().get(group_id, period_type, now)
    source = StudySessionStoreDB()
    window = resolve_window(period_type, now)
    members = MemberDirectoryDB.profiles(StudyGroupStoreDB.active_members(group_id))

    group_stats = snapshot.to_dict()
    group_stats["leaderboards"] = filter_leaderboards(snapshot.leaderboards, group_id, viewer_id)
    try:
        member_progress = member_progress_view(
            group_id, viewer_id, members, window, source, now,
            subject_days=current_app.config.get("SUBJECT_PROGRESS_DAYS", 30),
        )
        mine = personal_stats(source.sessions_for([viewer_id], window.start, window.end))
    except UpstreamUnavailable:
        if not stale:
            raise
        logger.warning("Dashboard for group %s served without live member progress", group_id)
        member_progress, mine = [], None
    return {
        "group_stats": group_stats,
        "member_progress": member_progress,
        "personal_stats": mine,
        "period": period_type.value,
        "stale": stale,
    }


def get_leaderboards(group_id: int, viewer_id: int, period: str = "weekly",
                     category: str | None = "all", now: datetime | None = None) -> dict:
    require_member(group_id, viewer_id)
    period_type = parse_period(period)
    board = parse_leaderboard(category)

    snapshot, stale = _stats_cache().get(group_id, period_type, now)
    return {
        "leaderboards": filter_leaderboards(snapshot.leaderboards, group_id, viewer_id, board),
        "period": period_type.value,
        "category": board.value if board else "all",
        "stale": stale,
    }


# ── Partnerships ───────────────────────────────────────────


def request_partnership(group_id: int, requester_id: int, target_id: int) -> dict:
    require_member(group_id, requester_id)
    entry = _partnerships().request(group_id, requester_id, target_id)
    target = MemberDirectoryDB.identity(target_id)
    return {
        "partner_id": target_id,
        "status": entry.status.value,
        "message": f"Partnership request sent to {target.name}",
    }


def respond_partnership(group_id: int, requester_id: int, responder_id: int, status: str) -> dict:
    result = _partnerships().respond(group_id, requester_id, responder_id, status)
    if result == PartnershipStatus.ACCEPTED:
        # total_partnerships is part of every snapshot
        _stats_cache().invalidate(group_id)
    requester = MemberDirectoryDB.identity(requester_id)
    if result == PartnershipStatus.ACCEPTED:
        message = f"You are now study partners with {requester.name}!"
    else:
        message = f"Partnership request from {requester.name} declined."
    return {"requester_id": requester_id, "status": result.value, "message": message}


def get_partners(group_id: int, user_id: int) -> dict:
    require_member(group_id, user_id)
    manager = _partnerships()
    result = manager.partners_of(group_id, user_id)
    result["incoming_requests"] = manager.incoming_requests(group_id, user_id)
    return result
