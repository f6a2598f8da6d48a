import logging
from typing import Optional

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from automation_runner.schemas.automation import RunnerRequest
from automation_runner.services.runner import RUNNER_MODES, run_automation_pass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation-runner", tags=["Automation Runner"])


@router.post("")
def trigger_runner(payload: Optional[RunnerRequest] = Body(None)):
    mode = "all" if payload is None else payload.mode

    if mode not in RUNNER_MODES:
        return JSONResponse(status_code=400, content={"error": f"Invalid mode: {mode}"})

    try:
        run_automation_pass(mode)
    except Exception as exc:
        # Per-node detail lives in the run/step tables, not in this response.
        logger.exception("Automation pass failed", extra={"mode": mode})
        return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})

    return {"ok": True}
