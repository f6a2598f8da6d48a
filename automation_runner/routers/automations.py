import logging

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from automation_runner.core.errors import AutomationError
from automation_runner.database import SessionLocal
from automation_runner.models.automation import Automation
from automation_runner.models.automation_run import AutomationRun
from automation_runner.models.delayed_job import DelayedJob
from automation_runner.schemas.automation import (
    ApprovalRequest,
    ManualRunRequest,
    ManualRunResponse,
    RunDetailResponse,
    RunListResponse,
)
from automation_runner.services import run_store
from automation_runner.services.approval_service import apply_approval_action
from automation_runner.services.graph_executor import run_graph

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Automations"])


def _iso(dt):
    return None if dt is None else dt.isoformat()


def _load_automation_for_org(db: Session, automation_id: str, org_id: str) -> Automation:
    automation = db.get(Automation, automation_id)
    if automation is None:
        raise HTTPException(status_code=404, detail="Automation not found")
    if automation.org_id != org_id:
        raise HTTPException(status_code=403, detail="Forbidden for this org")
    return automation


def _serialize_run(run: AutomationRun) -> dict:
    return {
        "id": run.id,
        "automation_id": run.automation_id,
        "status": run.status,
        "last_error": run.last_error,
        "started_at": _iso(run.started_at),
        "finished_at": _iso(run.finished_at),
    }


@router.post("/automations/{automation_id}/approval")
def update_approval(
    automation_id: str,
    payload: ApprovalRequest,
    x_org_id: str = Header(..., alias="X-Org-Id"),
):
    db = SessionLocal()
    try:
        _load_automation_for_org(db, automation_id, x_org_id)
        try:
            automation = apply_approval_action(
                automation_id,
                payload.action,
                actor_id=payload.actor_id,
                notes=payload.notes,
                db=db,
            )
        except ValueError as exc:
            db.rollback()
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        db.commit()
        return {"ok": True, "approval_status": automation.approval_status}
    finally:
        db.close()


@router.post("/automations/{automation_id}/run", response_model=ManualRunResponse)
def run_automation_manually(
    automation_id: str,
    payload: ManualRunRequest,
    x_org_id: str = Header(..., alias="X-Org-Id"),
):
    db = SessionLocal()
    try:
        automation = _load_automation_for_org(db, automation_id, x_org_id)
        status = automation.status
        graph = automation.graph
    finally:
        db.close()

    # Drafts can be test-run by hand; a paused automation stays paused.
    if status == "paused":
        return JSONResponse(status_code=409, content={"error": "Automation is paused"})

    try:
        result = run_graph(x_org_id, automation_id, graph, payload.context)
    except AutomationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except Exception as exc:
        logger.exception("Manual automation run failed", extra={"automation_id": automation_id})
        return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})

    return {"run_id": result.run_id, "status": result.status}


@router.get("/automations/{automation_id}/runs", response_model=RunListResponse)
def list_runs(
    automation_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=1_000_000),
    x_org_id: str = Header(..., alias="X-Org-Id"),
):
    db = SessionLocal()
    try:
        _load_automation_for_org(db, automation_id, x_org_id)
        rows = (
            db.query(AutomationRun)
            .filter(AutomationRun.automation_id == automation_id)
            .order_by(AutomationRun.started_at.desc(), AutomationRun.id.asc())
            .limit(int(limit))
            .offset(int(offset))
            .all()
        )
        return {
            "limit": int(limit),
            "offset": int(offset),
            "rows": [_serialize_run(r) for r in rows],
        }
    finally:
        db.close()


@router.get("/runs/{run_id}", response_model=RunDetailResponse)
def get_run(
    run_id: str,
    x_org_id: str = Header(..., alias="X-Org-Id"),
):
    db = SessionLocal()
    try:
        run = db.get(AutomationRun, run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if run.org_id != x_org_id:
            raise HTTPException(status_code=403, detail="Forbidden for this org")

        jobs = (
            db.query(DelayedJob)
            .filter(DelayedJob.run_id == run.id)
            .order_by(DelayedJob.execute_at.asc())
            .all()
        )

        return {
            **_serialize_run(run),
            "context": run.context or {},
            "steps": [
                {
                    "id": s.id,
                    "node_id": s.node_id,
                    "node_type": s.node_type,
                    "status": s.status,
                    "input": s.input,
                    "output": s.output,
                    "error": s.error,
                    "started_at": _iso(s.started_at),
                    "finished_at": _iso(s.finished_at),
                }
                for s in run_store.list_steps(db, run.id)
            ],
            "pending_jobs": [
                {"id": j.id, "node_id": j.node_id, "execute_at": _iso(j.execute_at)}
                for j in jobs
            ],
        }
    finally:
        db.close()
