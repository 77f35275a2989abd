"""
Leaderboard construction — ranks member aggregates per metric.

Entries are bare (member_id, value, rank) records. Who may see whose name is
decided later by privacy.filter_leaderboards, so ranking never depends on the
viewer.
"""

from __future__ import annotations

from models import LeaderboardEntry, LeaderboardType, MemberAggregate

LEADERBOARD_SIZE = 10

_METRICS = {
    LeaderboardType.STUDY_HOURS: lambda a: a.study_hours,
    LeaderboardType.STREAK: lambda a: a.streak,
    LeaderboardType.PRODUCTIVITY: lambda a: round(a.productivity, 2),
    LeaderboardType.GOALS_COMPLETED: lambda a: a.goals_completed,
}


def rank_by(aggregates: list[MemberAggregate], board: LeaderboardType,
            size: int = LEADERBOARD_SIZE) -> list[LeaderboardEntry]:
    """Top ``size`` members by one metric, highest first.

    The sort is stable: members with equal values keep their order in
    ``aggregates`` and receive consecutive ranks.
    """
    metric = _METRICS[board]
    ordered = sorted(aggregates, key=metric, reverse=True)
    return [
        LeaderboardEntry(member_id=a.user_id, value=metric(a), rank=i)
        for i, a in enumerate(ordered[:size], 1)
    ]


def build_leaderboards(aggregates: list[MemberAggregate],
                       size: int = LEADERBOARD_SIZE) -> dict[LeaderboardType, list[LeaderboardEntry]]:
    """All four boards, each ranked independently from the same input order."""
    return {board: rank_by(aggregates, board, size) for board in LeaderboardType}
