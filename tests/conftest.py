"""
Test fixtures for Study Group Progress.

Provides app, client, login and db fixtures with file-based SQLite, plus a
seeded study group:

    group 1 "Biology Crew": users 1 (Ada), 2 (Ben), 3 (Cleo) active,
                            user 4 (Dev) inactive
    group 2 "Chem Club":    user 4 only
"""

from __future__ import annotations

import pytest
from datetime import datetime

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))


USERS = [
    (1, "Ada", "ada@example.com", "/img/ada.png"),
    (2, "Ben", "ben@example.com", None),
    (3, "Cleo", "cleo@example.com", None),
    (4, "Dev", "dev@example.com", None),
]


def add_session(db, user_id: int, subject: str, minutes: float, productivity: float,
                start: datetime) -> None:
    db.execute(
        "INSERT INTO study_sessions (user_id, subject, duration_minutes, productivity, start_time) "
        "VALUES (?, ?, ?, ?, ?)",
        (user_id, subject, minutes, productivity, start.isoformat()),
    )
    db.commit()


def set_progress(db, user_id: int, streak: int = 0, goals: int = 0) -> None:
    db.execute(
        "INSERT OR REPLACE INTO progress_stats (user_id, current_streak, total_goals_completed, updated_at) "
        "VALUES (?, ?, ?, ?)",
        (user_id, streak, goals, datetime.now().isoformat()),
    )
    db.commit()


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "PARTNERSHIP_WRITE_ATTEMPTS": 2,
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()

        db = get_db()
        now = datetime.now().isoformat()
        for uid, name, email, picture in USERS:
            db.execute(
                "INSERT INTO users (id, name, email, profile_picture, created_at) VALUES (?, ?, ?, ?, ?)",
                (uid, name, email, picture, now),
            )
        db.execute("INSERT INTO study_groups (id, name, created_by, created_at) VALUES (1, 'Biology Crew', 1, ?)", (now,))
        db.execute("INSERT INTO study_groups (id, name, created_by, created_at) VALUES (2, 'Chem Club', 4, ?)", (now,))
        memberships = [
            (1, 1, "owner", 1, "2026-01-01T00:00:00"),
            (1, 2, "member", 1, "2026-01-02T00:00:00"),
            (1, 3, "member", 1, "2026-01-03T00:00:00"),
            (1, 4, "member", 0, "2026-01-04T00:00:00"),
            (2, 4, "owner", 1, "2026-01-01T00:00:00"),
        ]
        db.executemany(
            "INSERT INTO group_members (group_id, user_id, role, is_active, joined_at) VALUES (?, ?, ?, ?, ?)",
            memberships,
        )
        db.commit()

    # Yielded outside the app context; each test-client request pushes its own.
    yield app


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def login(app):
    """Return a test client logged in as the given user id."""
    def _login(user_id: int):
        client = app.test_client()
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
        return client
    return _login


@pytest.fixture
def auth_client(login):
    """Test client logged in as Ada (user 1, group 1 owner)."""
    return login(1)


@pytest.fixture
def week_start():
    from group_analytics import resolve_window
    from models import PeriodType
    return resolve_window(PeriodType.WEEKLY, datetime.now()).start


@pytest.fixture
def weekly_sessions(app, week_start):
    """Ada 5h, Ben 3h, Cleo 8h this week, with streaks and goals."""
    from datetime import timedelta
    from database import get_db

    with app.app_context():
        db = get_db()
        add_session(db, 1, "Biology", 180, 4, week_start + timedelta(hours=9))
        add_session(db, 1, "Chemistry", 120, 3, week_start + timedelta(hours=14))
        add_session(db, 2, "Biology", 180, 5, week_start + timedelta(hours=10))
        add_session(db, 3, "Physics", 300, 2, week_start + timedelta(hours=11))
        add_session(db, 3, "Biology", 180, 4, week_start + timedelta(hours=16))
        set_progress(db, 1, streak=12, goals=4)
        set_progress(db, 2, streak=47, goals=1)
        set_progress(db, 3, streak=3, goals=9)


@pytest.fixture
def fake_redis():
    import fakeredis
    return fakeredis.FakeRedis()
