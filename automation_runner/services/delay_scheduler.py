import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from automation_runner.database import SessionLocal
from automation_runner.models.automation import Automation
from automation_runner.models.automation_run import AutomationRun
from automation_runner.models.delayed_job import DelayedJob
from automation_runner.models.workflow import WorkflowGraph
from automation_runner.services.action_registry import ActionRegistry, default_registry
from automation_runner.services.graph_executor import run_graph
from automation_runner.services.run_store import close_savepoint, mark_run_failed, to_utc_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelayProcessResult:
    resumed: int
    failed: int
    skipped: int


def continuation_for(graph: WorkflowGraph, node_id: str):
    """(subgraph, start ids) for resuming after the delay node `node_id`."""
    start_ids = graph.successor_ids(node_id)
    return graph.reachable_subgraph(start_ids), start_ids


def process_delayed_jobs(
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: int = 50,
    registry: Optional[ActionRegistry] = None,
    rng: Any = None,
) -> DelayProcessResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()
    now = to_utc_aware(now)

    if registry is None:
        registry = default_registry()

    resumed = 0
    failed = 0
    skipped = 0

    try:
        jobs = (
            db.query(DelayedJob)
            .filter(DelayedJob.execute_at <= now)
            .order_by(DelayedJob.execute_at.asc(), DelayedJob.id.asc())
            .with_for_update(skip_locked=True)
            .limit(int(batch_size))
            .all()
        )

        for job in jobs:
            automation = db.get(Automation, job.automation_id)
            if automation is None:
                logger.warning(
                    "Dropping delayed job for missing automation",
                    extra={"delayed_job_id": job.id, "automation_id": job.automation_id},
                )
                db.delete(job)
                db.flush()
                skipped += 1
                continue

            if not automation.is_approved:
                # Left in place; it resumes once the automation is approved again.
                logger.info(
                    "Delayed job waiting on approval",
                    extra={"delayed_job_id": job.id, "automation_id": automation.id},
                )
                skipped += 1
                continue

            job_id = job.id
            run_id = job.run_id
            node_id = job.node_id
            org_id = job.org_id
            context = (job.payload or {}).get("context") or {}

            # Consumed in the same transaction as the resumed run's outcome.
            db.delete(job)
            db.flush()

            savepoint = db.begin_nested()
            try:
                graph = WorkflowGraph.from_dict(automation.graph)
                subgraph, start_ids = continuation_for(graph, node_id)

                run_graph(
                    org_id,
                    automation.id,
                    subgraph,
                    context,
                    run_id=run_id,
                    db=db,
                    registry=registry,
                    rng=rng,
                    start_node_ids=start_ids,
                )
                savepoint.commit()
                resumed += 1

            except Exception as exc:
                close_savepoint(savepoint)
                failed += 1
                run = db.get(AutomationRun, run_id)
                if run is not None and run.status != "failed":
                    # Failed before the executor recorded it, or its writes were rolled back.
                    mark_run_failed(db, run, str(exc) or type(exc).__name__)
                logger.exception(
                    "Delayed job resumption failed",
                    extra={
                        "delayed_job_id": job_id,
                        "run_id": run_id,
                        "automation_id": automation.id,
                    },
                )

        if owns_db:
            db.commit()

        return DelayProcessResult(resumed=resumed, failed=failed, skipped=skipped)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
