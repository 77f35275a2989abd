"""
DB-backed store classes for Study Group Progress.

The group, member and session stores are read-only views over data owned by
other parts of the platform. Share policies and stats snapshots are owned here.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional, Protocol

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from database import get_db
from errors import UpstreamUnavailable
from models import (
    DEFAULT_VISIBILITY,
    DataCategory,
    DisplayPreferences,
    GroupStatsSnapshot,
    MemberIdentity,
    MemberProfile,
    PartnerEntry,
    PartnershipStatus,
    PeriodType,
    SharePolicy,
    StudySession,
    Visibility,
)

logger = logging.getLogger(__name__)


# ── Protocols for external collaborators ─────────────────────────────


class SessionSource(Protocol):
    def sessions_for(self, user_ids: list[int], start: datetime, end: datetime) -> list[StudySession]: ...


# ── Study Groups ─────────────────────────────────────────────────────


class StudyGroupStoreDB:
    """Read access to study groups and their membership."""

    @staticmethod
    def get(group_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM study_groups WHERE id = ?", (group_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def is_active_member(group_id: int, user_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM group_members WHERE group_id = ? AND user_id = ? AND is_active = 1",
            (group_id, user_id),
        ).fetchone()
        return row is not None

    @staticmethod
    def active_members(group_id: int) -> list[int]:
        """Active member ids in join order."""
        db = get_db()
        rows = db.execute(
            "SELECT user_id FROM group_members WHERE group_id = ? AND is_active = 1 "
            "ORDER BY joined_at, user_id",
            (group_id,),
        ).fetchall()
        return [r["user_id"] for r in rows]


class MemberDirectoryDB:
    """Display identity and externally tracked progress counters."""

    @staticmethod
    def profiles(user_ids: list[int]) -> list[MemberProfile]:
        """Return one profile per id, in the order given."""
        if not user_ids:
            return []
        db = get_db()
        placeholders = ",".join("?" for _ in user_ids)
        rows = db.execute(
            f"SELECT user_id, current_streak, total_goals_completed FROM progress_stats "
            f"WHERE user_id IN ({placeholders})",
            tuple(user_ids),
        ).fetchall()
        by_id = {r["user_id"]: r for r in rows}
        profiles = []
        for uid in user_ids:
            r = by_id.get(uid)
            profiles.append(MemberProfile(
                user_id=uid,
                current_streak=r["current_streak"] if r else 0,
                goals_completed=r["total_goals_completed"] if r else 0,
            ))
        return profiles

    @staticmethod
    def identity(user_id: int) -> MemberIdentity:
        db = get_db()
        row = db.execute(
            "SELECT id, name, profile_picture FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        if not row:
            return MemberIdentity(id=user_id, name="Unknown User")
        return MemberIdentity(id=row["id"], name=row["name"], profile_picture=row["profile_picture"])


# ── Study Sessions ───────────────────────────────────────────────────


class StudySessionStoreDB:
    """Raw study sessions, read inside a time window."""

    def sessions_for(self, user_ids: list[int], start: datetime, end: datetime) -> list[StudySession]:
        """Sessions of ``user_ids`` starting in ``[start, end)``, oldest first.

        Raises UpstreamUnavailable when the session table cannot be read
        after retries.
        """
        if not user_ids:
            return []
        try:
            rows = self._fetch(user_ids, start.isoformat(), end.isoformat())
        except sqlite3.Error as e:
            logger.warning("Study session read failed for %d users: %s", len(user_ids), e)
            raise UpstreamUnavailable() from e
        return [StudySession(
            id=r["id"],
            user_id=r["user_id"],
            subject=r["subject"],
            duration_minutes=r["duration_minutes"],
            productivity=r["productivity"],
            start_time=datetime.fromisoformat(r["start_time"]),
        ) for r in rows]

    @retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _fetch(self, user_ids: list[int], start: str, end: str) -> list:
        db = get_db()
        placeholders = ",".join("?" for _ in user_ids)
        return db.execute(
            f"SELECT id, user_id, subject, duration_minutes, productivity, start_time "
            f"FROM study_sessions WHERE user_id IN ({placeholders}) "
            f"AND start_time >= ? AND start_time < ? ORDER BY start_time, id",
            (*user_ids, start, end),
        ).fetchall()


# ── Share Policies ───────────────────────────────────────────────────


def _parse_visibility(raw: str) -> dict[DataCategory, Visibility]:
    visibility = dict(DEFAULT_VISIBILITY)
    for key, value in json.loads(raw or "{}").items():
        try:
            visibility[DataCategory(key)] = Visibility(value)
        except ValueError:
            logger.warning("Ignoring unknown share setting %s=%s", key, value)
    return visibility


def _parse_display_preferences(raw: str) -> DisplayPreferences:
    prefs = DisplayPreferences()
    for key, value in json.loads(raw or "{}").items():
        if hasattr(prefs, key):
            setattr(prefs, key, bool(value))
    return prefs


class SharePolicyStoreDB:
    """Per (user, group) visibility settings and partner list."""

    @staticmethod
    def get(user_id: int, group_id: int) -> Optional[SharePolicy]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM share_policies WHERE user_id = ? AND group_id = ?",
            (user_id, group_id),
        ).fetchone()
        if not row:
            return None
        partner_rows = db.execute(
            "SELECT partner_id, status, partnered_at FROM share_policy_partners "
            "WHERE user_id = ? AND group_id = ? ORDER BY partnered_at, partner_id",
            (user_id, group_id),
        ).fetchall()
        return SharePolicy(
            user_id=user_id,
            group_id=group_id,
            visibility=_parse_visibility(row["visibility"]),
            display_preferences=_parse_display_preferences(row["display_preferences"]),
            partners=[PartnerEntry(
                partner_id=r["partner_id"],
                status=PartnershipStatus(r["status"]),
                partnered_at=r["partnered_at"],
            ) for r in partner_rows],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def get_or_create(user_id: int, group_id: int) -> SharePolicy:
        db = get_db()
        now = datetime.now().isoformat()
        defaults = SharePolicy(user_id=user_id, group_id=group_id)
        db.execute(
            "INSERT OR IGNORE INTO share_policies "
            "(user_id, group_id, visibility, display_preferences, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                user_id, group_id,
                json.dumps(defaults.to_dict()["visibility"]),
                json.dumps(defaults.to_dict()["display_preferences"]),
                now, now,
            ),
        )
        db.commit()
        return SharePolicyStoreDB.get(user_id, group_id)

    @staticmethod
    def save_settings(policy: SharePolicy) -> None:
        """Persist visibility and display preferences (not the partner list)."""
        db = get_db()
        data = policy.to_dict()
        policy.updated_at = datetime.now().isoformat()
        db.execute(
            "UPDATE share_policies SET visibility = ?, display_preferences = ?, updated_at = ? "
            "WHERE user_id = ? AND group_id = ?",
            (
                json.dumps(data["visibility"]),
                json.dumps(data["display_preferences"]),
                policy.updated_at,
                policy.user_id, policy.group_id,
            ),
        )
        db.commit()

    @staticmethod
    def add_partner(user_id: int, group_id: int, partner_id: int,
                    status: PartnershipStatus = PartnershipStatus.PENDING) -> bool:
        """Insert a partner entry. Returns False if one already exists."""
        db = get_db()
        try:
            db.execute(
                "INSERT INTO share_policy_partners (user_id, group_id, partner_id, status, partnered_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, group_id, partner_id, status.value, datetime.now().isoformat()),
            )
            db.execute(
                "UPDATE share_policies SET updated_at = ? WHERE user_id = ? AND group_id = ?",
                (datetime.now().isoformat(), user_id, group_id),
            )
            db.commit()
            return True
        except sqlite3.IntegrityError:
            db.rollback()
            return False

    @staticmethod
    def upsert_partner(user_id: int, group_id: int, partner_id: int,
                       status: PartnershipStatus) -> None:
        """Create the entry or overwrite its status."""
        db = get_db()
        now = datetime.now().isoformat()
        db.execute(
            "INSERT INTO share_policy_partners (user_id, group_id, partner_id, status, partnered_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id, group_id, partner_id) DO UPDATE SET "
            "status = excluded.status, partnered_at = excluded.partnered_at",
            (user_id, group_id, partner_id, status.value, now),
        )
        db.execute(
            "UPDATE share_policies SET updated_at = ? WHERE user_id = ? AND group_id = ?",
            (now, user_id, group_id),
        )
        db.commit()

    @staticmethod
    def set_partner_status(user_id: int, group_id: int, partner_id: int,
                           status: PartnershipStatus,
                           expected: PartnershipStatus | None = None) -> bool:
        """Update an existing entry. With ``expected``, only if it currently has that status."""
        db = get_db()
        sql = (
            "UPDATE share_policy_partners SET status = ?, partnered_at = ? "
            "WHERE user_id = ? AND group_id = ? AND partner_id = ?"
        )
        params: tuple = (status.value, datetime.now().isoformat(), user_id, group_id, partner_id)
        if expected is not None:
            sql += " AND status = ?"
            params += (expected.value,)
        cur = db.execute(sql, params)
        db.commit()
        return cur.rowcount == 1

    @staticmethod
    def incoming_requests(group_id: int, user_id: int) -> list[dict]:
        """Pending requests other members addressed to ``user_id``."""
        db = get_db()
        rows = db.execute(
            "SELECT user_id AS requester_id, partnered_at FROM share_policy_partners "
            "WHERE group_id = ? AND partner_id = ? AND status = ? ORDER BY partnered_at",
            (group_id, user_id, PartnershipStatus.PENDING.value),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def accepted_pair_count(group_id: int) -> int:
        """Accepted partnerships in a group, each pair counted once."""
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS c FROM share_policy_partners "
            "WHERE group_id = ? AND status = ? AND user_id < partner_id",
            (group_id, PartnershipStatus.ACCEPTED.value),
        ).fetchone()
        return row["c"]


# ── Group Stats Snapshots ────────────────────────────────────────────


class GroupStatsStoreDB:
    """Durable tier for the latest snapshot per (group, period)."""

    @staticmethod
    def get(group_id: int, period: PeriodType) -> Optional[GroupStatsSnapshot]:
        db = get_db()
        row = db.execute(
            "SELECT payload, last_computed_at, invalidated FROM group_stats_snapshots "
            "WHERE group_id = ? AND period_type = ?",
            (group_id, period.value),
        ).fetchone()
        if not row:
            return None
        snapshot = GroupStatsSnapshot.from_dict(json.loads(row["payload"]))
        snapshot.last_computed_at = datetime.fromisoformat(row["last_computed_at"])
        snapshot.invalidated = bool(row["invalidated"])
        return snapshot

    @staticmethod
    def save(snapshot: GroupStatsSnapshot) -> None:
        """Replace the stored snapshot in a single statement."""
        db = get_db()
        db.execute(
            "INSERT INTO group_stats_snapshots "
            "(group_id, period_type, payload, last_computed_at, invalidated) "
            "VALUES (?, ?, ?, ?, 0) "
            "ON CONFLICT(group_id, period_type) DO UPDATE SET "
            "payload = excluded.payload, last_computed_at = excluded.last_computed_at, "
            "invalidated = 0",
            (
                snapshot.group_id,
                snapshot.period_type.value,
                json.dumps(snapshot.to_dict()),
                snapshot.last_computed_at.isoformat(),
            ),
        )
        db.commit()

    @staticmethod
    def mark_stale(group_id: int, period: PeriodType | None = None) -> None:
        """Flag the group's snapshots (or one period's) for rebuild on the next read.

        The payload and ``last_computed_at`` are left as they were.
        """
        db = get_db()
        sql = "UPDATE group_stats_snapshots SET invalidated = 1 WHERE group_id = ?"
        params: tuple = (group_id,)
        if period is not None:
            sql += " AND period_type = ?"
            params += (period.value,)
        db.execute(sql, params)
        db.commit()
