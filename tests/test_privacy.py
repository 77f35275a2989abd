"""Tests for privacy.py: per-category visibility and leaderboard anonymisation."""

from __future__ import annotations

from datetime import datetime

from models import (
    ANONYMOUS_NAME,
    DataCategory,
    LeaderboardEntry,
    LeaderboardType,
    PartnerEntry,
    PartnershipStatus,
    PeriodType,
    SharePolicy,
    Visibility,
)


def _set_visibility(user_id, group_id, category, visibility):
    from db_stores import SharePolicyStoreDB
    policy = SharePolicyStoreDB.get_or_create(user_id, group_id)
    policy.visibility[category] = visibility
    SharePolicyStoreDB.save_settings(policy)


class TestPolicyAllows:
    def test_owner_always_sees_own_data(self):
        from privacy import policy_allows
        policy = SharePolicy(user_id=1, group_id=1)
        policy.visibility[DataCategory.STUDY_HOURS] = Visibility.PRIVATE
        assert policy_allows(policy, 1, 1, DataCategory.STUDY_HOURS)

    def test_no_policy_hides_only_test_scores(self):
        from privacy import policy_allows
        assert policy_allows(None, 1, 2, DataCategory.STUDY_HOURS)
        assert policy_allows(None, 1, 2, DataCategory.STUDY_SCHEDULE)
        assert not policy_allows(None, 1, 2, DataCategory.TEST_SCORES)

    def test_default_policy_is_stricter_than_no_policy(self):
        from privacy import policy_allows
        policy = SharePolicy(user_id=1, group_id=1)
        assert policy_allows(policy, 1, 2, DataCategory.STUDY_HOURS)
        assert not policy_allows(policy, 1, 2, DataCategory.STUDY_SCHEDULE)

    def test_private(self):
        from privacy import policy_allows
        policy = SharePolicy(user_id=1, group_id=1)
        policy.visibility[DataCategory.STUDY_STREAK] = Visibility.PRIVATE
        assert not policy_allows(policy, 1, 2, DataCategory.STUDY_STREAK)

    def test_partners_requires_accepted(self):
        from privacy import policy_allows
        policy = SharePolicy(user_id=1, group_id=1, partners=[
            PartnerEntry(partner_id=2, status=PartnershipStatus.ACCEPTED),
            PartnerEntry(partner_id=3, status=PartnershipStatus.PENDING),
        ])
        assert policy_allows(policy, 1, 2, DataCategory.TEST_SCORES)
        assert not policy_allows(policy, 1, 3, DataCategory.TEST_SCORES)
        assert not policy_allows(policy, 1, 4, DataCategory.TEST_SCORES)


class TestCanView:
    def test_reads_current_policy(self, db):
        from privacy import can_view
        assert can_view(1, 2, 1, DataCategory.STUDY_HOURS)
        _set_visibility(1, 1, DataCategory.STUDY_HOURS, Visibility.PRIVATE)
        assert not can_view(1, 2, 1, DataCategory.STUDY_HOURS)
        assert can_view(1, 1, 1, DataCategory.STUDY_HOURS)

    def test_policy_is_per_group(self, db):
        from privacy import can_view
        _set_visibility(1, 1, DataCategory.STUDY_HOURS, Visibility.PRIVATE)
        assert can_view(1, 2, 2, DataCategory.STUDY_HOURS)

    def test_accepted_partner_sees_partner_tier(self, db):
        from db_stores import SharePolicyStoreDB
        from privacy import can_view
        SharePolicyStoreDB.get_or_create(1, 1)
        SharePolicyStoreDB.upsert_partner(1, 1, 2, PartnershipStatus.ACCEPTED)
        assert can_view(1, 2, 1, DataCategory.TEST_SCORES)
        assert not can_view(1, 3, 1, DataCategory.TEST_SCORES)


class TestFilterLeaderboards:
    BOARDS = {
        LeaderboardType.STUDY_HOURS: [
            LeaderboardEntry(member_id=3, value=8.0, rank=1),
            LeaderboardEntry(member_id=1, value=5.0, rank=2),
            LeaderboardEntry(member_id=2, value=3.0, rank=3),
        ],
        LeaderboardType.STREAK: [
            LeaderboardEntry(member_id=2, value=47, rank=1),
        ],
    }

    def test_visible_entries_carry_identity(self, db):
        from privacy import filter_leaderboards
        result = filter_leaderboards(self.BOARDS, 1, viewer_id=2)
        top = result["top_study_hours"][0]
        assert top == {
            "user": {"id": 3, "name": "Cleo", "profile_picture": None},
            "value": 8.0,
            "rank": 1,
        }

    def test_hidden_member_is_anonymised_but_keeps_value_and_rank(self, db):
        from privacy import filter_leaderboards
        _set_visibility(1, 1, DataCategory.STUDY_HOURS, Visibility.PRIVATE)
        result = filter_leaderboards(self.BOARDS, 1, viewer_id=2)
        entry = result["top_study_hours"][1]
        assert entry["user"] == {"id": 1, "name": ANONYMOUS_NAME, "profile_picture": None}
        assert entry["value"] == 5.0
        assert entry["rank"] == 2

    def test_owner_sees_own_private_entry(self, db):
        from privacy import filter_leaderboards
        _set_visibility(1, 1, DataCategory.STUDY_HOURS, Visibility.PRIVATE)
        result = filter_leaderboards(self.BOARDS, 1, viewer_id=1)
        assert result["top_study_hours"][1]["user"]["name"] == "Ada"
        assert result["top_study_hours"][1]["user"]["profile_picture"] == "/img/ada.png"

    def test_category_follows_board(self, db):
        from privacy import filter_leaderboards
        _set_visibility(2, 1, DataCategory.STUDY_STREAK, Visibility.PRIVATE)
        result = filter_leaderboards(self.BOARDS, 1, viewer_id=3)
        assert result["top_streak"][0]["user"]["name"] == ANONYMOUS_NAME
        assert result["top_study_hours"][2]["user"]["name"] == "Ben"

    def test_narrow_to_one_board(self, db):
        from privacy import filter_leaderboards
        result = filter_leaderboards(self.BOARDS, 1, viewer_id=2, board=LeaderboardType.STREAK)
        assert list(result) == ["top_streak"]

    def test_same_snapshot_differs_per_viewer(self, db):
        from privacy import filter_leaderboards
        _set_visibility(3, 1, DataCategory.STUDY_HOURS, Visibility.PRIVATE)
        as_owner = filter_leaderboards(self.BOARDS, 1, viewer_id=3)
        as_other = filter_leaderboards(self.BOARDS, 1, viewer_id=2)
        assert as_owner["top_study_hours"][0]["user"]["name"] == "Cleo"
        assert as_other["top_study_hours"][0]["user"]["name"] == ANONYMOUS_NAME


class TestMemberProgressView:
    def test_hides_fields_per_category(self, db, weekly_sessions):
        from db_stores import MemberDirectoryDB, StudyGroupStoreDB, StudySessionStoreDB
        from group_analytics import resolve_window
        from privacy import member_progress_view

        _set_visibility(3, 1, DataCategory.STUDY_STREAK, Visibility.PRIVATE)
        now = datetime.now()
        members = MemberDirectoryDB.profiles(StudyGroupStoreDB.active_members(1))
        rows = member_progress_view(1, 1, members, resolve_window(PeriodType.WEEKLY, now),
                                    StudySessionStoreDB(), now)

        assert [r["user_id"] for r in rows] == [1, 2, 3]
        assert rows[0]["is_current_user"] is True
        cleo = rows[2]
        assert "current_streak" not in cleo
        assert cleo["study_hours"] == 8.0
        assert cleo["goals_completed"] == 9
        assert rows[1]["current_streak"] == 47
