"""Tests for the progress sharing HTTP API (blueprints/progress.py)."""

import json

import pytest


def _put(client, url, body):
    return client.put(url, data=json.dumps(body), content_type="application/json")


def _post(client, url, body):
    return client.post(url, data=json.dumps(body), content_type="application/json")


class TestAuth:
    def test_unauthenticated_request_rejected(self, client):
        resp = client.get("/api/groups/1/progress-settings")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Unauthorized"

    def test_inactive_member_forbidden(self, login):
        resp = login(4).get("/api/groups/1/progress-dashboard")
        assert resp.status_code == 403
        assert resp.get_json() == {
            "success": False,
            "error": "NotMember",
            "message": "Access denied. You must be a member of this group.",
        }

    def test_unknown_group(self, auth_client):
        resp = auth_client.get("/api/groups/99/leaderboards")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "NotFound"

    def test_security_headers(self, auth_client):
        resp = auth_client.get("/api/groups/1/progress-settings", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.headers["X-Request-ID"] == "abc123"


class TestProgressSettings:
    def test_defaults_created_on_first_read(self, auth_client):
        resp = auth_client.get("/api/groups/1/progress-settings")
        assert resp.status_code == 200
        settings = resp.get_json()["data"]["progress_settings"]
        assert settings["visibility"]["studyHours"] == "group"
        assert settings["visibility"]["testScores"] == "partners"
        assert settings["display_preferences"]["show_in_leaderboard"] is True
        assert settings["partners"] == []

    def test_update_merges(self, auth_client):
        resp = _put(auth_client, "/api/groups/1/progress-settings", {
            "share_settings": {"studyHours": "private"},
            "display_preferences": {"show_real_name": False},
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["message"] == "Progress settings updated successfully"
        settings = data["data"]["progress_settings"]
        assert settings["visibility"]["studyHours"] == "private"
        assert settings["visibility"]["studyStreak"] == "group"
        assert settings["display_preferences"]["show_real_name"] is False

        again = auth_client.get("/api/groups/1/progress-settings").get_json()
        assert again["data"]["progress_settings"]["visibility"]["studyHours"] == "private"

    def test_unknown_visibility_rejected(self, auth_client):
        resp = _put(auth_client, "/api/groups/1/progress-settings", {
            "share_settings": {"studyHours": "everyone"},
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "InvalidSetting"

    def test_unknown_category_rejected(self, auth_client):
        resp = _put(auth_client, "/api/groups/1/progress-settings", {
            "share_settings": {"shoeSize": "group"},
        })
        assert resp.status_code == 400

    @pytest.mark.parametrize("body", [
        {"share_settings": ["studyHours"]},
        {"share_settings": "private"},
        {"display_preferences": ["show_real_name"]},
        {"display_preferences": "off"},
    ])
    def test_non_object_settings_rejected(self, auth_client, body):
        resp = _put(auth_client, "/api/groups/1/progress-settings", body)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "InvalidSetting"

    def test_update_is_audited(self, auth_client, db):
        _put(auth_client, "/api/groups/1/progress-settings", {"share_settings": {"testScores": "private"}})
        row = db.execute("SELECT action, detail FROM audit_log WHERE user_id = 1").fetchone()
        assert row["action"] == "share_policy_updated"
        assert "testScores=private" in row["detail"]


class TestDashboard:
    def test_shape(self, auth_client, weekly_sessions):
        resp = auth_client.get("/api/groups/1/progress-dashboard?period=weekly")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["period"] == "weekly"
        assert data["stale"] is False
        stats = data["group_stats"]
        assert stats["member_stats"]["active_member_count"] == 3
        assert stats["member_stats"]["average_study_hours"] == 5.33
        assert [e["user"]["name"] for e in stats["leaderboards"]["top_study_hours"]] == [
            "Cleo", "Ada", "Ben",
        ]
        assert stats["subject_stats"][0]["subject"] == "Biology"
        assert data["personal_stats"] == {
            "total_hours": 5.0, "total_sessions": 2, "average_productivity": 3.5,
        }
        assert len(data["member_progress"]) == 3

    def test_default_period_is_weekly(self, auth_client):
        data = auth_client.get("/api/groups/1/progress-dashboard").get_json()["data"]
        assert data["period"] == "weekly"

    def test_invalid_period(self, auth_client):
        resp = auth_client.get("/api/groups/1/progress-dashboard?period=yearly")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "InvalidPeriod"

    def test_private_member_anonymised_for_others(self, login, weekly_sessions):
        _put(login(3), "/api/groups/1/progress-settings", {"share_settings": {"studyHours": "private"}})

        as_ben = login(2).get("/api/groups/1/progress-dashboard").get_json()["data"]
        top = as_ben["group_stats"]["leaderboards"]["top_study_hours"][0]
        assert top["user"]["name"] == "Private User"
        assert top["value"] == 8.0
        assert top["rank"] == 1
        cleo = [m for m in as_ben["member_progress"] if m["user_id"] == 3][0]
        assert "study_hours" not in cleo

        as_cleo = login(3).get("/api/groups/1/progress-dashboard").get_json()["data"]
        assert as_cleo["group_stats"]["leaderboards"]["top_study_hours"][0]["user"]["name"] == "Cleo"


class TestLeaderboards:
    def test_all_boards(self, auth_client, weekly_sessions):
        data = auth_client.get("/api/groups/1/leaderboards").get_json()["data"]
        assert data["category"] == "all"
        assert set(data["leaderboards"]) == {
            "top_study_hours", "top_streak", "top_productivity", "top_goals_completed",
        }
        assert data["leaderboards"]["top_streak"][0]["user"]["name"] == "Ben"

    def test_single_category(self, auth_client, weekly_sessions):
        data = auth_client.get("/api/groups/1/leaderboards?category=top_goals_completed").get_json()["data"]
        assert list(data["leaderboards"]) == ["top_goals_completed"]
        assert data["leaderboards"]["top_goals_completed"][0]["value"] == 9

    def test_unknown_category(self, auth_client):
        resp = auth_client.get("/api/groups/1/leaderboards?category=top_snacks")
        assert resp.status_code == 400


class TestPartnerships:
    def test_request_and_accept(self, login):
        ada, ben = login(1), login(2)

        resp = _post(ada, "/api/groups/1/request-partnership", {"partner_id": 2})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["data"] == {"partner_id": 2, "status": "pending"}
        assert body["message"] == "Partnership request sent to Ben"

        incoming = ben.get("/api/groups/1/study-partners").get_json()["data"]["incoming_requests"]
        assert [r["requester_id"] for r in incoming] == [1]

        resp = _put(ben, "/api/groups/1/respond-partnership", {"requester_id": 1, "status": "accepted"})
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "You are now study partners with Ada!"

        for client, other in ((ada, 2), (ben, 1)):
            partners = client.get("/api/groups/1/study-partners").get_json()["data"]["partners"]
            assert [p["partner_id"] for p in partners] == [other]

    def test_decline(self, login):
        _post(login(1), "/api/groups/1/request-partnership", {"partner_id": 2})
        resp = _put(login(2), "/api/groups/1/respond-partnership", {"requester_id": 1, "status": "declined"})
        assert resp.get_json()["data"]["status"] == "declined"
        assert login(2).get("/api/groups/1/study-partners").get_json()["data"]["partners"] == []

    def test_duplicate_request(self, auth_client):
        _post(auth_client, "/api/groups/1/request-partnership", {"partner_id": 2})
        resp = _post(auth_client, "/api/groups/1/request-partnership", {"partner_id": 2})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "DuplicatePartnership"

    def test_self_request(self, auth_client):
        resp = _post(auth_client, "/api/groups/1/request-partnership", {"partner_id": 1})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "SelfReference"

    def test_missing_partner_id(self, auth_client):
        resp = _post(auth_client, "/api/groups/1/request-partnership", {})
        assert resp.status_code == 400

    def test_respond_without_request(self, login):
        resp = _put(login(2), "/api/groups/1/respond-partnership", {"requester_id": 1, "status": "accepted"})
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "PartnershipNotFound"

    def test_invalid_status(self, login):
        _post(login(1), "/api/groups/1/request-partnership", {"partner_id": 2})
        resp = _put(login(2), "/api/groups/1/respond-partnership", {"requester_id": 1, "status": "pending"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "InvalidStatus"

    def test_accept_refreshes_partnership_count(self, login, weekly_sessions):
        ada = login(1)
        before = ada.get("/api/groups/1/progress-dashboard").get_json()["data"]
        assert before["group_stats"]["activity_stats"]["total_partnerships"] == 0

        _post(ada, "/api/groups/1/request-partnership", {"partner_id": 3})
        _put(login(3), "/api/groups/1/respond-partnership", {"requester_id": 1, "status": "accepted"})

        after = ada.get("/api/groups/1/progress-dashboard").get_json()["data"]
        assert after["group_stats"]["activity_stats"]["total_partnerships"] == 1


class TestUpstreamFailure:
    @staticmethod
    def _break_sessions(monkeypatch):
        from db_stores import StudySessionStoreDB
        from errors import UpstreamUnavailable

        def unavailable(self, user_ids, start, end):
            raise UpstreamUnavailable()

        monkeypatch.setattr(StudySessionStoreDB, "sessions_for", unavailable)

    def test_no_snapshot_yet(self, auth_client, monkeypatch):
        self._break_sessions(monkeypatch)
        resp = auth_client.get("/api/groups/1/leaderboards")
        assert resp.status_code == 503
        assert resp.get_json()["error"] == "UpstreamUnavailable"

    def test_dashboard_served_stale(self, app, weekly_sessions, monkeypatch):
        from datetime import datetime, timedelta
        import group_progress

        now = datetime.now()
        with app.test_request_context():
            group_progress.get_dashboard(1, 1, "weekly", now)
            self._break_sessions(monkeypatch)
            data = group_progress.get_dashboard(1, 1, "weekly", now + timedelta(hours=2))

        assert data["stale"] is True
        assert data["group_stats"]["member_stats"]["average_study_hours"] == 5.33
        assert data["member_progress"] == []
        assert data["personal_stats"] is None
