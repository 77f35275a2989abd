"""
Stats cache — serves group snapshots and rebuilds them when stale.

Two tiers: the shared cache backend (Redis or in-memory) in front of the
group_stats_snapshots table. A snapshot older than ``max_age_hours`` is
rebuilt synchronously on the read that notices it. Rebuilds are idempotent
and replace the whole snapshot in one write, so concurrent rebuilds only
waste work. A per-key lock keeps one process from rebuilding the same
snapshot twice at once.
"""

from __future__ import annotations

import logging
import threading
import weakref
from datetime import datetime

from cache_backend import CacheBackend, get_cache
from db_stores import (
    GroupStatsStoreDB,
    MemberDirectoryDB,
    SessionSource,
    SharePolicyStoreDB,
    StudyGroupStoreDB,
    StudySessionStoreDB,
)
from errors import UpstreamUnavailable
from group_analytics import compute_group_stats, previous_window, resolve_window
from leaderboards import LEADERBOARD_SIZE
from models import GroupStatsSnapshot, PeriodType

logger = logging.getLogger(__name__)

# Entries go away once no request holds the lock
_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(group_id: int, period: PeriodType) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault((group_id, period.value), threading.Lock())


def needs_refresh(snapshot: GroupStatsSnapshot | None, max_age_hours: float = 1,
                  now: datetime | None = None) -> bool:
    """False only for a snapshot that was not invalidated and is younger than ``max_age_hours``."""
    if snapshot is None or snapshot.invalidated:
        return True
    return snapshot.age_hours(now) > max_age_hours


def cache_key(group_id: int, period: PeriodType) -> str:
    return f"group_stats:{group_id}:{period.value}"


class StatsCache:
    """Staleness gate in front of the aggregator."""

    def __init__(self, max_age_hours: float = 1, leaderboard_size: int = LEADERBOARD_SIZE,
                 source: SessionSource | None = None, cache: CacheBackend | None = None) -> None:
        self.max_age_hours = max_age_hours
        self.leaderboard_size = leaderboard_size
        self.source = source or StudySessionStoreDB()
        self.cache = cache or get_cache()

    @property
    def ttl_seconds(self) -> int:
        return max(1, int(self.max_age_hours * 3600))

    def _is_fresh(self, snapshot: GroupStatsSnapshot | None, now: datetime | None) -> bool:
        return not needs_refresh(snapshot, self.max_age_hours, now)

    def get(self, group_id: int, period: PeriodType,
            now: datetime | None = None) -> tuple[GroupStatsSnapshot, bool]:
        """Return ``(snapshot, stale)``.

        ``stale`` is True only when a rebuild failed upstream and the previous
        snapshot is being served instead.
        """
        key = cache_key(group_id, period)
        cached = self.cache.get(key)
        if cached is not None:
            snapshot = GroupStatsSnapshot.from_dict(cached)
            if self._is_fresh(snapshot, now):
                return snapshot, False

        stored = GroupStatsStoreDB.get(group_id, period)
        if self._is_fresh(stored, now):
            self.cache.set(key, stored.to_dict(), ttl=self.ttl_seconds)
            return stored, False

        with _lock_for(group_id, period):
            # Another request may have rebuilt it while we waited.
            stored = GroupStatsStoreDB.get(group_id, period)
            if self._is_fresh(stored, now):
                return stored, False
            try:
                return self.refresh(group_id, period, now), False
            except UpstreamUnavailable:
                if stored is None:
                    raise
                logger.warning(
                    "Serving stale stats for group %s (%s): session source unavailable",
                    group_id, period.value,
                )
                return stored, True

    def refresh(self, group_id: int, period: PeriodType,
                now: datetime | None = None) -> GroupStatsSnapshot:
        """Recompute, persist and return the snapshot for (group, period).

        Nothing is written unless the computation succeeds.
        """
        now = now or datetime.now()
        window = resolve_window(period, now)
        members = MemberDirectoryDB.profiles(StudyGroupStoreDB.active_members(group_id))
        member_ids = [m.user_id for m in members]

        sessions = self.source.sessions_for(member_ids, window.start, window.end)
        previous = None
        if period != PeriodType.ALL_TIME:
            before = previous_window(window)
            previous = self.source.sessions_for(member_ids, before.start, before.end)

        snapshot = compute_group_stats(
            group_id=group_id,
            period=period,
            window=window,
            members=members,
            sessions=sessions,
            previous_sessions=previous,
            partnership_count=SharePolicyStoreDB.accepted_pair_count(group_id),
            now=now,
            leaderboard_size=self.leaderboard_size,
        )
        GroupStatsStoreDB.save(snapshot)
        self.cache.set(cache_key(group_id, period), snapshot.to_dict(), ttl=self.ttl_seconds)
        logger.info(
            "Recomputed %s stats for group %s: %d members, %d sessions",
            period.value, group_id, len(members), len(sessions),
        )
        return snapshot

    def invalidate(self, group_id: int, period: PeriodType | None = None) -> None:
        """Force the next read of this group to rebuild; every period unless one is given."""
        if period is None:
            self.cache.delete_prefix(f"group_stats:{group_id}:")
        else:
            self.cache.delete(cache_key(group_id, period))
        GroupStatsStoreDB.mark_stale(group_id, period)
