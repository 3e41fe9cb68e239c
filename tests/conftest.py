"""
Shared pytest fixtures for the Procurement Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - officer_role: Pre-created PROCUREMENT role
    - make_user / make_officer / make_request: ORM factories
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import pytest

from portal import create_app
from portal.models import db as _db
from portal.models.auth import Department, Role, User, UserRole
from portal.models.request import Request

_seq = count(1)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def department():
    dept = Department(name="Public Works", code=f"PW{next(_seq)}")
    _db.session.add(dept)
    _db.session.flush()
    return dept


@pytest.fixture()
def officer_role():
    role = Role(name="PROCUREMENT", display_name="Procurement Officer")
    _db.session.add(role)
    _db.session.flush()
    return role


@pytest.fixture()
def make_user():
    def _make_user(*, full_name=None, department_id=None, user_id=None, status="active"):
        n = next(_seq)
        user = User(
            id=user_id,
            email=f"user{n}@portal.test",
            full_name=full_name or f"User {n}",
            department_id=department_id,
            status=status,
        )
        _db.session.add(user)
        _db.session.flush()
        return user
    return _make_user


@pytest.fixture()
def make_officer(make_user, officer_role):
    def _make_officer(*, full_name=None, user_id=None):
        user = make_user(full_name=full_name, user_id=user_id)
        _db.session.add(UserRole(user_id=user.id, role_id=officer_role.id))
        _db.session.flush()
        return user
    return _make_officer


@pytest.fixture()
def make_request():
    def _make_request(
        *,
        requester_id=None,
        department_id=None,
        total="0",
        status="DRAFT",
        assignee_id=None,
        days_ago=0,
    ):
        n = next(_seq)
        req = Request(
            reference=f"PR-TEST-{n:04d}",
            title=f"Request {n}",
            requester_id=requester_id,
            department_id=department_id,
            total_estimated=Decimal(str(total)),
            status=status,
            current_assignee_id=assignee_id,
            created_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
        )
        _db.session.add(req)
        _db.session.flush()
        return req
    return _make_request
