"""
Group Analytics — turns raw study sessions into a group stats snapshot.

Everything here is a pure function of its inputs: the member list, the
sessions inside the window and the clock value passed in. The stats cache
decides when to call it; nothing in this module touches the database.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from leaderboards import LEADERBOARD_SIZE, build_leaderboards
from models import (
    ActivityStats,
    DateRange,
    DayActivity,
    DistributionBucket,
    GroupStatsSnapshot,
    Growth,
    HourActivity,
    MemberAggregate,
    MemberProfile,
    MemberStats,
    PercentileSet,
    PeriodType,
    StudySession,
    SubjectStat,
    Trends,
)

ALL_TIME_WINDOW = DateRange(start=datetime(2020, 1, 1), end=datetime(2031, 1, 1))

PERCENTILE_TARGETS = (25, 50, 75, 90)

HOURS_BUCKETS = (("0-2", 0, 2), ("2-4", 2, 4), ("4-6", 4, 6), ("6+", 6, math.inf))
# Bounds are [low, high); streaks are whole days.
STREAK_BUCKETS = (("0-7", 0, 8), ("8-14", 8, 15), ("15-30", 15, 31), ("30+", 31, math.inf))


# ── Windows ────────────────────────────────────────────────


def resolve_window(period: PeriodType, now: datetime | None = None) -> DateRange:
    """Half-open ``[start, end)`` window for a period containing ``now``.

    Weeks start on Sunday. All-time is a fixed wide window.
    """
    now = now or datetime.now()
    today = datetime(now.year, now.month, now.day)
    if period == PeriodType.DAILY:
        return DateRange(today, today + timedelta(days=1))
    if period == PeriodType.WEEKLY:
        # weekday(): Monday=0 .. Sunday=6
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return DateRange(start, start + timedelta(days=7))
    if period == PeriodType.MONTHLY:
        start = today.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return DateRange(start, end)
    return DateRange(ALL_TIME_WINDOW.start, ALL_TIME_WINDOW.end)


def previous_window(window: DateRange) -> DateRange:
    """The window of equal length ending where ``window`` starts."""
    return DateRange(window.start - (window.end - window.start), window.start)


# ── Percentiles ────────────────────────────────────────────


def nearest_rank(sorted_values: list[float], percentile: float) -> float:
    """Nearest-rank percentile over ascending values; 0 for an empty list."""
    if not sorted_values:
        return 0
    index = math.ceil(percentile / 100 * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


def percentile_set(values: list[float], ndigits: int | None = None) -> PercentileSet:
    ordered = sorted(values)
    picked = [nearest_rank(ordered, p) for p in PERCENTILE_TARGETS]
    if ndigits is not None:
        picked = [round(v, ndigits) for v in picked]
    return PercentileSet(*picked)


# ── Aggregation ────────────────────────────────────────────


def aggregate_members(members: list[MemberProfile],
                      sessions: list[StudySession]) -> list[MemberAggregate]:
    """Per-member totals, in the order of ``members``.

    Sessions of users outside ``members`` are ignored.
    """
    totals = {
        m.user_id: {"minutes": 0.0, "productivity": 0.0, "count": 0}
        for m in members
    }
    for s in sessions:
        t = totals.get(s.user_id)
        if t is None:
            continue
        t["minutes"] += s.duration_minutes
        t["productivity"] += s.productivity
        t["count"] += 1

    aggregates = []
    for m in members:
        t = totals[m.user_id]
        aggregates.append(MemberAggregate(
            user_id=m.user_id,
            study_hours=round(t["minutes"] / 60, 2),
            productivity=t["productivity"] / t["count"] if t["count"] else 0.0,
            streak=m.current_streak,
            goals_completed=m.goals_completed,
            session_count=t["count"],
        ))
    return aggregates


def member_stats(aggregates: list[MemberAggregate], sessions: list[StudySession]) -> MemberStats:
    n = len(aggregates)
    total_hours = sum(s.duration_minutes for s in sessions) / 60
    return MemberStats(
        active_member_count=n,
        average_study_hours=round(total_hours / n, 2) if n else 0.0,
        total_study_hours=round(total_hours, 2),
        average_streak=round(sum(a.streak for a in aggregates) / n, 2) if n else 0.0,
        longest_streak=max((a.streak for a in aggregates), default=0),
        total_goals_completed=sum(a.goals_completed for a in aggregates),
    )


def subject_stats(sessions: list[StudySession]) -> list[SubjectStat]:
    """Per-subject totals ranked by hours, most studied first.

    Subjects with equal hours keep the order in which they first appear in
    ``sessions``.
    """
    data: dict[str, dict] = {}
    for s in sessions:
        d = data.setdefault(s.subject, {"minutes": 0.0, "count": 0, "members": set(), "productivity": 0.0})
        d["minutes"] += s.duration_minutes
        d["count"] += 1
        d["members"].add(s.user_id)
        d["productivity"] += s.productivity

    stats = [
        SubjectStat(
            subject=subject,
            total_hours=round(d["minutes"] / 60, 2),
            member_count=len(d["members"]),
            average_productivity=round(d["productivity"] / d["count"], 2) if d["count"] else 0.0,
        )
        for subject, d in data.items()
    ]
    stats.sort(key=lambda s: s.total_hours, reverse=True)
    for rank, s in enumerate(stats, 1):
        s.popularity_rank = rank
    return stats


def activity_stats(sessions: list[StudySession], partnership_count: int = 0) -> ActivityStats:
    n = len(sessions)
    return ActivityStats(
        total_study_sessions=n,
        average_session_duration=round(sum(s.duration_minutes for s in sessions) / n, 2) if n else 0.0,
        total_partnerships=partnership_count,
    )


def _distribution(values: list[float], buckets) -> list[DistributionBucket]:
    n = len(values)
    result = []
    for label, low, high in buckets:
        count = sum(1 for v in values if low <= v < high)
        result.append(DistributionBucket(
            range=label,
            count=count,
            percentage=round(count / n * 100, 1) if n else 0.0,
        ))
    return result


def distributions(aggregates: list[MemberAggregate]) -> dict[str, list[DistributionBucket]]:
    return {
        "study_hours": _distribution([a.study_hours for a in aggregates], HOURS_BUCKETS),
        "streak": _distribution([a.streak for a in aggregates], STREAK_BUCKETS),
    }


def _pct_change(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0 if current == 0 else 100.0
    return round((current - previous) / previous * 100, 1)


def growth(sessions: list[StudySession], previous_sessions: list[StudySession]) -> Growth:
    """Change against the preceding window, in percent."""
    def summary(batch):
        hours = sum(s.duration_minutes for s in batch) / 60
        active = len({s.user_id for s in batch})
        productivity = sum(s.productivity for s in batch) / len(batch) if batch else 0.0
        return hours, active, productivity

    cur_hours, cur_active, cur_prod = summary(sessions)
    prev_hours, prev_active, prev_prod = summary(previous_sessions)
    return Growth(
        study_hours=_pct_change(cur_hours, prev_hours),
        active_members=_pct_change(cur_active, prev_active),
        average_productivity=_pct_change(cur_prod, prev_prod),
    )


def trends(sessions: list[StudySession],
           previous_sessions: list[StudySession] | None = None) -> Trends:
    by_hour: dict[int, list[StudySession]] = {}
    by_day: dict[int, list[StudySession]] = {}
    for s in sessions:
        by_hour.setdefault(s.start_time.hour, []).append(s)
        # 0 = Sunday
        by_day.setdefault((s.start_time.weekday() + 1) % 7, []).append(s)

    peak = [
        HourActivity(
            hour=hour,
            activity_count=len(batch),
            average_duration=round(sum(s.duration_minutes for s in batch) / len(batch), 2),
        )
        for hour, batch in sorted(by_hour.items())
    ]
    peak.sort(key=lambda h: h.activity_count, reverse=True)

    days = [
        DayActivity(
            day_of_week=day,
            activity_count=len(batch),
            average_hours=round(sum(s.duration_minutes for s in batch) / 60 / len(batch), 2),
        )
        for day, batch in sorted(by_day.items())
    ]
    days.sort(key=lambda d: d.activity_count, reverse=True)

    return Trends(
        peak_activity_times=peak,
        popular_study_days=days,
        growth=growth(sessions, previous_sessions) if previous_sessions is not None else Growth(),
    )


def compute_group_stats(
    group_id: int,
    period: PeriodType,
    window: DateRange,
    members: list[MemberProfile],
    sessions: list[StudySession],
    previous_sessions: list[StudySession] | None = None,
    partnership_count: int = 0,
    now: datetime | None = None,
    leaderboard_size: int = LEADERBOARD_SIZE,
) -> GroupStatsSnapshot:
    """Build a complete snapshot for one (group, period).

    ``sessions`` must already be restricted to ``window`` and to the active
    members; anything else is dropped here so the result depends only on
    in-window activity of ``members``.
    """
    member_ids = {m.user_id for m in members}
    in_window = [s for s in sessions if s.user_id in member_ids and window.contains(s.start_time)]
    aggregates = aggregate_members(members, in_window)

    return GroupStatsSnapshot(
        group_id=group_id,
        period_type=period,
        date_range=window,
        member_stats=member_stats(aggregates, in_window),
        subject_stats=subject_stats(in_window),
        leaderboards=build_leaderboards(aggregates, leaderboard_size),
        percentiles={
            "study_hours": percentile_set([a.study_hours for a in aggregates]),
            "streak": percentile_set([a.streak for a in aggregates]),
            "productivity": percentile_set([a.productivity for a in aggregates], ndigits=2),
        },
        activity_stats=activity_stats(in_window, partnership_count),
        distributions=distributions(aggregates),
        trends=trends(in_window, previous_sessions),
        last_computed_at=now or datetime.now(),
    )


def personal_stats(sessions: list[StudySession]) -> dict:
    """One member's totals for the dashboard's personal comparison panel."""
    total_hours = sum(s.duration_minutes for s in sessions) / 60
    average_productivity = (
        sum(s.productivity for s in sessions) / len(sessions) if sessions else 0.0
    )
    return {
        "total_hours": round(total_hours, 2),
        "total_sessions": len(sessions),
        "average_productivity": round(average_productivity, 2),
    }


def subject_hours(sessions: list[StudySession]) -> list[dict]:
    """Hours per subject in first-seen order."""
    hours: dict[str, float] = {}
    for s in sessions:
        hours[s.subject] = hours.get(s.subject, 0.0) + s.duration_minutes / 60
    return [{"subject": subject, "hours": round(h, 2)} for subject, h in hours.items()]
