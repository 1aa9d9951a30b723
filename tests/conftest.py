"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- Database sessions rolled back after every test
- A seeded staff directory (managers, HR, admin)
- Engine, selector and outbox fixtures on a deterministic clock

Environment Variables:
- DATABASE_URL: connection URL.  Defaults to in-memory SQLite; set a
  PostgreSQL URL (postgresql+psycopg://...) to run the ``postgres`` tests.
"""

import json
import logging
import os
import threading
from datetime import date
from io import StringIO
from types import SimpleNamespace
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.db.base import Base
from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.request import EntityType
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.models.profile import ProfileModel
from workflow_kernel.selectors.inbox_selector import InboxSelector
from workflow_kernel.services.directory import DirectoryIdentityProvider
from workflow_kernel.services.notification_outbox import NotificationOutbox
from workflow_kernel.services.workflow_engine import WorkflowEngine

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def database_is_postgres() -> bool:
    return get_database_url().startswith("postgresql")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_engine):
            workflow_engine.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _truncate_all_tables(engine):
    """Delete committed rows left by tests that need real commits."""
    with engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(text(f"DELETE FROM {table.name}"))
        conn.commit()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection
    (``join_transaction_mode="create_savepoint"``); the outer transaction is
    rolled back at teardown, undoing everything the test wrote.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Session factory for threads that need real commits (PostgreSQL only).

    All created sessions are closed and committed data is removed at
    teardown.
    """
    if not database_is_postgres():
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")

    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()

    def tracked_factory():
        with lock:
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _truncate_all_tables(db_engine)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def settings() -> WorkflowSettings:
    return WorkflowSettings()


def add_profile(
    session: Session,
    full_name: str,
    *,
    manager_id: UUID | None = None,
    property_id: UUID | None = None,
    roles: list[str] | None = None,
    is_active: bool = True,
) -> UUID:
    """Insert one profile and flush (managers must exist before reports)."""
    profile = ProfileModel(
        full_name=full_name,
        email=f"{full_name.lower().replace(' ', '.')}.{uuid4().hex[:6]}@example.com",
        manager_id=manager_id,
        property_id=property_id,
        roles=list(roles or []),
        is_active=is_active,
    )
    session.add(profile)
    session.flush()
    return profile.id


def seed_directory(session: Session) -> SimpleNamespace:
    """Two properties, each with a manager and staff, plus HR and admin."""
    d = SimpleNamespace()
    d.harbour = uuid4()
    d.summit = uuid4()
    d.admin = add_profile(session, "Rae Admin", roles=["regional_admin"])
    d.regional_hr = add_profile(session, "Rita Regional", roles=["regional_hr"])
    d.property_hr = add_profile(
        session, "Paula Property", property_id=d.harbour, roles=["property_hr"],
    )
    d.manager = add_profile(session, "Mark Manager", property_id=d.harbour)
    d.employee = add_profile(
        session, "Erin Employee", manager_id=d.manager, property_id=d.harbour,
    )
    d.colleague = add_profile(
        session, "Sam Staff", manager_id=d.manager, property_id=d.harbour,
    )
    d.summit_manager = add_profile(session, "Mia Manager", property_id=d.summit)
    d.summit_employee = add_profile(
        session, "Ben Other", manager_id=d.summit_manager, property_id=d.summit,
    )
    d.orphan = add_profile(session, "Olive Orphan", property_id=d.harbour)
    d.outsider = add_profile(session, "Otto Outsider", property_id=d.summit)
    return d


@pytest.fixture
def directory(session) -> SimpleNamespace:
    return seed_directory(session)


@pytest.fixture
def identity(session, settings) -> DirectoryIdentityProvider:
    return DirectoryIdentityProvider(session, settings)


@pytest.fixture
def outbox(session, deterministic_clock, settings) -> NotificationOutbox:
    return NotificationOutbox(session, deterministic_clock, settings)


@pytest.fixture
def workflow_engine(session, identity, deterministic_clock, settings, outbox):
    return WorkflowEngine(
        session,
        identity,
        clock=deterministic_clock,
        settings=settings,
        outbox=outbox,
    )


@pytest.fixture
def inbox_selector(session, identity, settings) -> InboxSelector:
    return InboxSelector(session, identity, settings=settings)


def leave_payload(**overrides) -> dict:
    payload = {
        "leave_type": "vacation",
        "start_date": date(2025, 3, 10),
        "end_date": date(2025, 3, 14),
        "reason": "Family visit",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def submit_leave(workflow_engine, directory, deterministic_clock):
    """Create and submit a leave request; advances the clock each call."""

    def _submit(requester_id: UUID | None = None, **overrides):
        deterministic_clock.advance(60)
        return workflow_engine.create_request(
            EntityType.LEAVE_REQUEST,
            leave_payload(**overrides),
            requester_id or directory.employee,
        )

    return _submit
