import os
import tempfile
from pathlib import Path

_TEST_DB_PATH = Path(tempfile.gettempdir()) / f"automation_runner_test_{os.getpid()}.db"
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", f"sqlite:///{_TEST_DB_PATH}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["AUTOMATION_WORKER_ENABLED"] = "0"

import pytest  # noqa: E402

from automation_runner import database, models  # noqa: E402,F401
from automation_runner.database import SessionLocal  # noqa: E402
from automation_runner.models.automation import Automation  # noqa: E402
from automation_runner.models.event_log import EventLog  # noqa: E402
from automation_runner.services.action_registry import ActionRegistry  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database():
    database.configure_database()
    database.Base.metadata.drop_all(database.engine)
    database.Base.metadata.create_all(database.engine)

    yield

    database.engine.dispose()
    if TEST_DATABASE_URL.startswith("sqlite"):
        _TEST_DB_PATH.unlink(missing_ok=True)


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    yield

    with database.engine.begin() as conn:
        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_automation():
    def _make(
        graph: dict,
        *,
        org_id: str = "org-1",
        trigger: dict = None,
        status: str = "active",
        requires_approval: bool = False,
        approval_status: str = "none",
        name: str = "test automation",
    ) -> Automation:
        session = SessionLocal()
        try:
            row = Automation(
                org_id=org_id,
                name=name,
                trigger=trigger or {"kind": "event", "event_type": "deal.created"},
                graph=graph,
                status=status,
                requires_approval=requires_approval,
                approval_status=approval_status,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row
        finally:
            session.close()

    return _make


@pytest.fixture
def make_event():
    def _make(
        event_type: str = "deal.created",
        *,
        org_id: str = "org-1",
        subject_type: str = "deal",
        subject_id: str = "deal-1",
        payload: dict = None,
        occurred_at=None,
    ) -> EventLog:
        session = SessionLocal()
        try:
            row = EventLog(
                org_id=org_id,
                event_type=event_type,
                subject_type=subject_type,
                subject_id=subject_id,
                payload=payload or {},
                processed=False,
            )
            if occurred_at is not None:
                row.occurred_at = occurred_at
            session.add(row)
            session.commit()
            session.refresh(row)
            return row
        finally:
            session.close()

    return _make


@pytest.fixture
def recording_registry():
    """Registry with side-effect-free actions that record what they were called with."""
    calls = []

    def record(ctx, input):
        calls.append({"org_id": ctx.org_id, "run_id": ctx.run_id, "input": input})
        return {"recorded": len(calls)}

    def fail(ctx, input):
        raise RuntimeError("boom")

    registry = ActionRegistry({"test.record": record, "test.fail": fail})
    registry.calls = calls
    return registry
