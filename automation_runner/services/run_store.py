from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session, SessionTransaction

from automation_runner.core.errors import RunNotFoundError
from automation_runner.models.automation_run import AutomationRun, AutomationRunStep
from automation_runner.models.delayed_job import DelayedJob


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_aware(dt: datetime) -> datetime:
    """Naive datetimes (SQLite round-trips) are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def close_savepoint(savepoint: SessionTransaction) -> bool:
    """Keep what a failed run recorded, unless a broken flush already voided the savepoint."""
    if savepoint.is_active:
        savepoint.commit()
        return True
    savepoint.rollback()
    return False


def create_run(db: Session, *, org_id: str, automation_id: str, context: dict) -> AutomationRun:
    run = AutomationRun(
        org_id=org_id,
        automation_id=automation_id,
        context=context,
        status="running",
        started_at=utcnow(),
    )
    db.add(run)
    db.flush()
    return run


def resume_run(db: Session, run_id: str) -> AutomationRun:
    run = db.get(AutomationRun, run_id)
    if run is None:
        raise RunNotFoundError(f"Run not found: {run_id}")
    run.status = "running"
    run.finished_at = None
    db.flush()
    return run


def record_step(
    db: Session,
    *,
    run_id: str,
    node_id: str,
    node_type: str,
    status: str,
    started_at: datetime,
    input: Any = None,
    output: Any = None,
    error: Optional[str] = None,
) -> AutomationRunStep:
    step = AutomationRunStep(
        run_id=run_id,
        node_id=node_id,
        node_type=node_type,
        status=status,
        input=input,
        output=output,
        error=error,
        started_at=started_at,
        finished_at=utcnow(),
    )
    db.add(step)
    db.flush()
    return step


def mark_run_failed(db: Session, run: AutomationRun, error: str) -> None:
    run.status = "failed"
    run.last_error = error
    run.finished_at = utcnow()
    db.flush()


def record_failed_run(db: Session, *, org_id: str, automation_id: str, context: dict, error: str) -> AutomationRun:
    run = create_run(db, org_id=org_id, automation_id=automation_id, context=context)
    mark_run_failed(db, run, error)
    return run


def mark_run_drained(db: Session, run: AutomationRun) -> None:
    """Queue is empty: success, unless a delayed continuation is still outstanding."""
    if count_pending_jobs(db, run.id):
        run.status = "waiting"
        run.finished_at = None
    else:
        run.status = "success"
        run.finished_at = utcnow()
    db.flush()


def schedule_delayed_job(
    db: Session,
    *,
    org_id: str,
    automation_id: str,
    run_id: str,
    node_id: str,
    delay_ms: int,
    context: dict,
) -> DelayedJob:
    job = DelayedJob(
        org_id=org_id,
        automation_id=automation_id,
        run_id=run_id,
        node_id=node_id,
        execute_at=utcnow() + timedelta(milliseconds=delay_ms),
        payload={"context": context},
    )
    db.add(job)
    db.flush()
    return job


def count_pending_jobs(db: Session, run_id: str) -> int:
    return db.query(DelayedJob).filter(DelayedJob.run_id == run_id).count()


def list_steps(db: Session, run_id: str):
    return (
        db.query(AutomationRunStep)
        .filter(AutomationRunStep.run_id == run_id)
        .order_by(AutomationRunStep.id.asc())
        .all()
    )
