"""
Per-category visibility checks and viewer-specific rendering.

``can_view`` answers one question: may this viewer see this owner's data in
this category? It reads the owner's current share policy and is evaluated per
entry on every read; policies can change between requests.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from db_stores import MemberDirectoryDB, SharePolicyStoreDB, SessionSource
from group_analytics import personal_stats, subject_hours
from models import (
    DataCategory,
    DateRange,
    LEADERBOARD_CATEGORY,
    LeaderboardEntry,
    LeaderboardType,
    MemberIdentity,
    MemberProfile,
    SharePolicy,
    StudySession,
    Visibility,
)

SUBJECT_PROGRESS_DAYS = 30


def policy_allows(policy: SharePolicy | None, owner_id: int, viewer_id: int,
                  category: DataCategory) -> bool:
    if viewer_id == owner_id:
        return True
    if policy is None:
        # No settings saved yet: group-visible except test scores.
        return category != DataCategory.TEST_SCORES
    visibility = policy.visibility[category]
    if visibility == Visibility.PRIVATE:
        return False
    if visibility == Visibility.GROUP:
        return True
    if visibility == Visibility.PARTNERS:
        return policy.is_accepted_partner(viewer_id)
    raise ValueError(f"Unhandled visibility: {visibility!r}")


def can_view(owner_id: int, viewer_id: int, group_id: int, category: DataCategory) -> bool:
    """Whether ``viewer_id`` may see ``owner_id``'s ``category`` data in a group."""
    policy = SharePolicyStoreDB.get(owner_id, group_id)
    return policy_allows(policy, owner_id, viewer_id, category)


# ── Leaderboards ───────────────────────────────────────────


def _render_entry(entry: LeaderboardEntry, group_id: int, viewer_id: int,
                  category: DataCategory) -> dict:
    if can_view(entry.member_id, viewer_id, group_id, category):
        identity = MemberDirectoryDB.identity(entry.member_id)
    else:
        identity = MemberIdentity.anonymous(entry.member_id)
    # Hidden members keep their value and rank; only the identity is masked.
    return {"user": identity.to_dict(), "value": entry.value, "rank": entry.rank}


def filter_leaderboards(leaderboards: dict[LeaderboardType, list[LeaderboardEntry]],
                        group_id: int, viewer_id: int,
                        board: LeaderboardType | None = None) -> dict[str, list[dict]]:
    """Render boards for one viewer. ``board`` narrows the result to one type."""
    rendered: dict[str, list[dict]] = {}
    for board_type, entries in leaderboards.items():
        if board is not None and board_type != board:
            continue
        category = LEADERBOARD_CATEGORY[board_type]
        rendered[board_type.value] = [
            _render_entry(e, group_id, viewer_id, category) for e in entries
        ]
    return rendered


# ── Dashboard member view ──────────────────────────────────


def _by_user(sessions: list[StudySession]) -> dict[int, list[StudySession]]:
    grouped: dict[int, list[StudySession]] = {}
    for s in sessions:
        grouped.setdefault(s.user_id, []).append(s)
    return grouped


def member_progress_view(group_id: int, viewer_id: int, members: list[MemberProfile],
                         window: DateRange, source: SessionSource,
                         now: datetime | None = None,
                         subject_days: int = SUBJECT_PROGRESS_DAYS) -> list[dict]:
    """One row per active member with only the fields the viewer may see.

    ``subject_progress`` covers the last ``subject_days`` days, not ``window``.
    """
    now = now or datetime.now()
    member_ids = [m.user_id for m in members]
    in_window = _by_user(source.sessions_for(member_ids, window.start, window.end))
    recent = _by_user(source.sessions_for(
        member_ids, now - timedelta(days=subject_days), now,
    ))

    rows = []
    for m in members:
        identity = MemberDirectoryDB.identity(m.user_id)
        row = {
            "user_id": m.user_id,
            "name": identity.name,
            "profile_picture": identity.profile_picture,
            "is_current_user": m.user_id == viewer_id,
        }
        if can_view(m.user_id, viewer_id, group_id, DataCategory.STUDY_HOURS):
            row["study_hours"] = personal_stats(in_window.get(m.user_id, []))["total_hours"]
        if can_view(m.user_id, viewer_id, group_id, DataCategory.STUDY_STREAK):
            row["current_streak"] = m.current_streak
        if can_view(m.user_id, viewer_id, group_id, DataCategory.SUBJECT_PROGRESS):
            row["subject_progress"] = subject_hours(recent.get(m.user_id, []))
        if can_view(m.user_id, viewer_id, group_id, DataCategory.GOAL_COMPLETION):
            row["goals_completed"] = m.goals_completed
        rows.append(row)
    return rows
