"""
Domain types for group progress sharing.

Dataclasses for study sessions, share policies, partnerships and group stats
snapshots, plus the closed enums for data categories, visibility levels and
period types. Snapshots and policies round-trip through plain dicts so they
can live in sqlite JSON columns and in the cache tier.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class DataCategory(str, Enum):
    STUDY_HOURS = "studyHours"
    STUDY_STREAK = "studyStreak"
    SUBJECT_PROGRESS = "subjectProgress"
    GOAL_COMPLETION = "goalCompletion"
    TEST_SCORES = "testScores"
    ACHIEVEMENTS = "achievements"
    STUDY_SCHEDULE = "studySchedule"


class Visibility(str, Enum):
    PRIVATE = "private"
    GROUP = "group"
    PARTNERS = "partners"


class PartnershipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class PeriodType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


class LeaderboardType(str, Enum):
    STUDY_HOURS = "top_study_hours"
    STREAK = "top_streak"
    PRODUCTIVITY = "top_productivity"
    GOALS_COMPLETED = "top_goals_completed"


# testScores and studySchedule are more sensitive, so they default to partners.
DEFAULT_VISIBILITY: dict[DataCategory, Visibility] = {
    DataCategory.STUDY_HOURS: Visibility.GROUP,
    DataCategory.STUDY_STREAK: Visibility.GROUP,
    DataCategory.SUBJECT_PROGRESS: Visibility.GROUP,
    DataCategory.GOAL_COMPLETION: Visibility.GROUP,
    DataCategory.TEST_SCORES: Visibility.PARTNERS,
    DataCategory.ACHIEVEMENTS: Visibility.GROUP,
    DataCategory.STUDY_SCHEDULE: Visibility.PARTNERS,
}

LEADERBOARD_CATEGORY: dict[LeaderboardType, DataCategory] = {
    LeaderboardType.STUDY_HOURS: DataCategory.STUDY_HOURS,
    LeaderboardType.STREAK: DataCategory.STUDY_STREAK,
    LeaderboardType.PRODUCTIVITY: DataCategory.SUBJECT_PROGRESS,
    LeaderboardType.GOALS_COMPLETED: DataCategory.GOAL_COMPLETION,
}

ANONYMOUS_NAME = "Private User"


# ── External collaborator records ──────────────────────────


@dataclass
class StudySession:
    user_id: int
    subject: str
    duration_minutes: float
    productivity: float
    start_time: datetime
    id: int = 0


@dataclass
class MemberProfile:
    """An active group member as seen by the aggregator."""
    user_id: int
    current_streak: int = 0
    goals_completed: int = 0


@dataclass
class MemberIdentity:
    id: int
    name: str
    profile_picture: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def anonymous(user_id: int) -> MemberIdentity:
        return MemberIdentity(id=user_id, name=ANONYMOUS_NAME, profile_picture=None)


# ── Share policy ───────────────────────────────────────────


@dataclass
class DisplayPreferences:
    show_real_name: bool = True
    show_in_leaderboard: bool = True
    allow_data_comparison: bool = True
    show_milestones: bool = True


@dataclass
class PartnerEntry:
    partner_id: int
    status: PartnershipStatus = PartnershipStatus.PENDING
    partnered_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "partner_id": self.partner_id,
            "status": self.status.value,
            "partnered_at": self.partnered_at,
        }


@dataclass
class SharePolicy:
    user_id: int
    group_id: int
    visibility: dict[DataCategory, Visibility] = field(
        default_factory=lambda: dict(DEFAULT_VISIBILITY)
    )
    display_preferences: DisplayPreferences = field(default_factory=DisplayPreferences)
    partners: list[PartnerEntry] = field(default_factory=list)
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def partner(self, partner_id: int) -> Optional[PartnerEntry]:
        for entry in self.partners:
            if entry.partner_id == partner_id:
                return entry
        return None

    def is_accepted_partner(self, user_id: int) -> bool:
        entry = self.partner(user_id)
        return entry is not None and entry.status == PartnershipStatus.ACCEPTED

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "group_id": self.group_id,
            "visibility": {c.value: v.value for c, v in self.visibility.items()},
            "display_preferences": asdict(self.display_preferences),
            "partners": [p.to_dict() for p in self.partners],
            "updated_at": self.updated_at,
        }


# ── Group stats snapshot ───────────────────────────────────


@dataclass
class DateRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class MemberStats:
    active_member_count: int = 0
    average_study_hours: float = 0.0
    total_study_hours: float = 0.0
    average_streak: float = 0.0
    longest_streak: int = 0
    total_goals_completed: int = 0


@dataclass
class SubjectStat:
    subject: str
    total_hours: float = 0.0
    member_count: int = 0
    average_productivity: float = 0.0
    popularity_rank: int = 0


@dataclass
class LeaderboardEntry:
    member_id: int
    value: float
    rank: int


@dataclass
class PercentileSet:
    p25: float = 0
    p50: float = 0
    p75: float = 0
    p90: float = 0


@dataclass
class ActivityStats:
    total_study_sessions: int = 0
    average_session_duration: float = 0.0
    total_partnerships: int = 0


@dataclass
class DistributionBucket:
    range: str
    count: int = 0
    percentage: float = 0.0


@dataclass
class HourActivity:
    hour: int
    activity_count: int = 0
    average_duration: float = 0.0


@dataclass
class DayActivity:
    day_of_week: int  # 0 = Sunday
    activity_count: int = 0
    average_hours: float = 0.0


@dataclass
class Growth:
    study_hours: float = 0.0
    active_members: float = 0.0
    average_productivity: float = 0.0


@dataclass
class Trends:
    peak_activity_times: list[HourActivity] = field(default_factory=list)
    popular_study_days: list[DayActivity] = field(default_factory=list)
    growth: Growth = field(default_factory=Growth)


@dataclass
class GroupStatsSnapshot:
    group_id: int
    period_type: PeriodType
    date_range: DateRange
    member_stats: MemberStats = field(default_factory=MemberStats)
    subject_stats: list[SubjectStat] = field(default_factory=list)
    leaderboards: dict[LeaderboardType, list[LeaderboardEntry]] = field(default_factory=dict)
    percentiles: dict[str, PercentileSet] = field(default_factory=dict)
    activity_stats: ActivityStats = field(default_factory=ActivityStats)
    distributions: dict[str, list[DistributionBucket]] = field(default_factory=dict)
    trends: Trends = field(default_factory=Trends)
    last_computed_at: datetime = field(default_factory=datetime.now)
    # Set by an explicit invalidation; not part of the serialised snapshot
    invalidated: bool = False

    def age_hours(self, now: datetime | None = None) -> float:
        now = now or datetime.now()
        return (now - self.last_computed_at).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "period_type": self.period_type.value,
            "date_range": {
                "start": self.date_range.start.isoformat(),
                "end": self.date_range.end.isoformat(),
            },
            "member_stats": asdict(self.member_stats),
            "subject_stats": [asdict(s) for s in self.subject_stats],
            "leaderboards": {
                board.value: [asdict(e) for e in entries]
                for board, entries in self.leaderboards.items()
            },
            "percentiles": {k: asdict(v) for k, v in self.percentiles.items()},
            "activity_stats": asdict(self.activity_stats),
            "distributions": {
                k: [asdict(b) for b in buckets] for k, buckets in self.distributions.items()
            },
            "trends": asdict(self.trends),
            "last_computed_at": self.last_computed_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> GroupStatsSnapshot:
        trends = data.get("trends", {})
        return GroupStatsSnapshot(
            group_id=data["group_id"],
            period_type=PeriodType(data["period_type"]),
            date_range=DateRange(
                start=datetime.fromisoformat(data["date_range"]["start"]),
                end=datetime.fromisoformat(data["date_range"]["end"]),
            ),
            member_stats=MemberStats(**data.get("member_stats", {})),
            subject_stats=[SubjectStat(**s) for s in data.get("subject_stats", [])],
            leaderboards={
                LeaderboardType(board): [LeaderboardEntry(**e) for e in entries]
                for board, entries in data.get("leaderboards", {}).items()
            },
            percentiles={
                k: PercentileSet(**v) for k, v in data.get("percentiles", {}).items()
            },
            activity_stats=ActivityStats(**data.get("activity_stats", {})),
            distributions={
                k: [DistributionBucket(**b) for b in buckets]
                for k, buckets in data.get("distributions", {}).items()
            },
            trends=Trends(
                peak_activity_times=[HourActivity(**h) for h in trends.get("peak_activity_times", [])],
                popular_study_days=[DayActivity(**d) for d in trends.get("popular_study_days", [])],
                growth=Growth(**trends.get("growth", {})),
            ),
            last_computed_at=datetime.fromisoformat(data["last_computed_at"]),
        )


@dataclass
class MemberAggregate:
    """Per-member totals inside one window; input to ranking and percentiles."""
    user_id: int
    study_hours: float = 0.0
    productivity: float = 0.0
    streak: int = 0
    goals_completed: int = 0
    session_count: int = 0
