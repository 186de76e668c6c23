"""
Shared pytest fixtures for the activity core test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - owner: Pre-created person Entity owning test activities
    - make_activity: factory creating activities through the service layer
"""

import pytest

from activity_core import create_app
from activity_core.models import db as _db
from activity_core.models.entity import Entity


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def owner():
    """A person entity that owns the activities under test."""
    person = Entity(name="Test Owner", entity_type="person")
    _db.session.add(person)
    _db.session.commit()
    return person


@pytest.fixture()
def make_activity(owner):
    """Factory: create an activity via the service, defaulting owner to ``owner``."""
    from activity_core.services import activity_service

    def _make(name, activity_type="task", parent=None, **fields):
        data = {"name": name, "activity_type": activity_type,
                "owner_entity_id": owner.id, **fields}
        if parent is not None:
            data["parent_id"] = parent.id
        return activity_service.create_activity(data)

    return _make
