import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from automation_runner.core.config import get_batch_size
from automation_runner.database import SessionLocal
from automation_runner.services.action_registry import ActionRegistry, default_registry
from automation_runner.services.delay_scheduler import DelayProcessResult, process_delayed_jobs
from automation_runner.services.run_store import utcnow
from automation_runner.services.trigger_dispatcher import DispatchResult, process_event_batch

logger = logging.getLogger(__name__)

RUNNER_MODES = ("events", "delays", "all")


@dataclass(frozen=True)
class RunnerPassResult:
    mode: str
    events: Optional[DispatchResult] = None
    delays: Optional[DelayProcessResult] = None


def run_automation_pass(
    mode: str = "all",
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
    registry: Optional[ActionRegistry] = None,
    rng: Any = None,
) -> RunnerPassResult:
    """One stateless pass: dispatch pending events, then resume due delayed jobs."""
    if mode not in RUNNER_MODES:
        raise ValueError(f"Invalid mode: {mode}")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()
    if batch_size is None:
        batch_size = get_batch_size()
    if registry is None:
        registry = default_registry()

    events = None
    delays = None

    try:
        if mode in ("events", "all"):
            events = process_event_batch(db=db, now=now, batch_size=batch_size, registry=registry, rng=rng)
            if owns_db:
                db.commit()

        if mode in ("delays", "all"):
            delays = process_delayed_jobs(db=db, now=now, batch_size=batch_size, registry=registry, rng=rng)
            if owns_db:
                db.commit()

        logger.info(
            "Automation pass complete",
            extra={
                "mode": mode,
                "events": None if events is None else events.events,
                "runs_failed": None if events is None else events.runs_failed,
                "delays_resumed": None if delays is None else delays.resumed,
                "delays_failed": None if delays is None else delays.failed,
            },
        )
        return RunnerPassResult(mode=mode, events=events, delays=delays)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def _is_postgres(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def try_acquire_runner_lock(db: Session) -> bool:
    # Only Postgres has advisory locks; other backends run single-process.
    if not _is_postgres(db):
        return True
    res = db.execute(text("select pg_try_advisory_lock(5150, 5151)")).scalar()
    return bool(res)


def release_runner_lock(db: Session) -> None:
    if not _is_postgres(db):
        return
    db.execute(text("select pg_advisory_unlock(5150, 5151)"))
