import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.schema import Index

from automation_runner.database import Base, JsonType


class AutomationRun(Base):
    __tablename__ = "automation_runs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String, nullable=False, index=True)
    automation_id = Column(String, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False, index=True)

    context = Column(JsonType, nullable=False, default=dict)

    # "waiting" = queue drained but a delayed job for this run is still outstanding
    status = Column(String, nullable=False, default="running", server_default="running")
    last_error = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'waiting', 'success', 'failed')",
            name="ck_automation_runs_status",
        ),
    )


class AutomationRunStep(Base):
    __tablename__ = "automation_run_steps"

    # Monotonic id doubles as the visitation order within a run.
    id = Column(Integer, primary_key=True)
    run_id = Column(String, ForeignKey("automation_runs.id", ondelete="CASCADE"), nullable=False)

    node_id = Column(String, nullable=False)
    node_type = Column(String, nullable=False)
    status = Column(String, nullable=False)

    input = Column(JsonType, nullable=True)
    output = Column(JsonType, nullable=True)
    error = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_automation_run_steps_run_node", "run_id", "node_id"),
    )
