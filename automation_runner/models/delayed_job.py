from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func

from automation_runner.database import Base, JsonType


class DelayedJob(Base):
    __tablename__ = "delayed_jobs"

    id = Column(Integer, primary_key=True)

    org_id = Column(String, nullable=False)
    automation_id = Column(String, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False)
    run_id = Column(String, ForeignKey("automation_runs.id", ondelete="CASCADE"), nullable=False, index=True)

    # The delay node that suspended the run; successors resume from here.
    node_id = Column(String, nullable=False)

    execute_at = Column(DateTime(timezone=True), nullable=False, index=True)
    payload = Column(JsonType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
