from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RunnerRequest(BaseModel):
    mode: str = "all"


class ApprovalRequest(BaseModel):
    action: Literal["request", "approve", "reject"]
    actor_id: Optional[str] = None
    notes: Optional[str] = None


class ManualRunRequest(BaseModel):
    context: Dict[str, Any] = Field(default_factory=dict)


class ManualRunResponse(BaseModel):
    run_id: str
    status: str


class RunRow(BaseModel):
    id: str
    automation_id: str
    status: str
    last_error: Optional[str]
    started_at: str
    finished_at: Optional[str]


class RunListResponse(BaseModel):
    limit: int
    offset: int
    rows: List[RunRow]


class StepRow(BaseModel):
    id: int
    node_id: str
    node_type: str
    status: str
    input: Any = None
    output: Any = None
    error: Optional[str]
    started_at: str
    finished_at: str


class PendingJobRow(BaseModel):
    id: int
    node_id: str
    execute_at: str


class RunDetailResponse(RunRow):
    context: Dict[str, Any]
    steps: List[StepRow]
    pending_jobs: List[PendingJobRow]
