import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from automation_runner.database import SessionLocal
from automation_runner.models.automation import Automation
from automation_runner.models.event_log import EventLog
from automation_runner.services.action_registry import ActionRegistry, default_registry
from automation_runner.services.graph_executor import run_graph
from automation_runner.services.run_store import close_savepoint, record_failed_run, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    events: int
    runs_started: int
    runs_failed: int


def event_context(event: EventLog) -> dict:
    return {
        "event": event.to_dict(),
        "subject_type": event.subject_type,
        "subject_id": event.subject_id,
        "payload": event.payload,
    }


def _matching_automations(db: Session, event: EventLog):
    rows = (
        db.query(Automation)
        .filter(Automation.org_id == event.org_id, Automation.status == "active")
        .order_by(Automation.created_at.asc(), Automation.id.asc())
        .all()
    )
    return [a for a in rows if a.matches_event(event.event_type)]


def process_event_batch(
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: int = 50,
    registry: Optional[ActionRegistry] = None,
    rng: Any = None,
) -> DispatchResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    if registry is None:
        registry = default_registry()

    events = 0
    runs_started = 0
    runs_failed = 0

    try:
        rows = (
            db.query(EventLog)
            .filter(EventLog.processed.is_(False))
            .order_by(EventLog.occurred_at.asc(), EventLog.id.asc())
            .with_for_update(skip_locked=True)
            .limit(int(batch_size))
            .all()
        )

        for event in rows:
            for automation in _matching_automations(db, event):
                runs_started += 1
                savepoint = db.begin_nested()
                try:
                    run_graph(
                        event.org_id,
                        automation.id,
                        automation.graph,
                        event_context(event),
                        db=db,
                        registry=registry,
                        rng=rng,
                    )
                    savepoint.commit()
                except Exception as exc:
                    if not close_savepoint(savepoint):
                        # The run's own rows were rolled back with the savepoint.
                        record_failed_run(
                            db,
                            org_id=event.org_id,
                            automation_id=automation.id,
                            context=event_context(event),
                            error=str(exc) or type(exc).__name__,
                        )
                    # One automation failing must not block the others for this event.
                    runs_failed += 1
                    logger.exception(
                        "Automation dispatch failed",
                        extra={
                            "event_log_id": event.id,
                            "event_type": event.event_type,
                            "automation_id": automation.id,
                        },
                    )

            event.processed = True
            event.processed_at = now
            db.flush()
            events += 1

        if owns_db:
            db.commit()

        return DispatchResult(events=events, runs_started=runs_started, runs_failed=runs_failed)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
