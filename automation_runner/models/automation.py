import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, false, func
from sqlalchemy.schema import Index

from automation_runner.database import Base, JsonType


class Automation(Base):
    __tablename__ = "automations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String, nullable=False, index=True)

    name = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=1, server_default="1")

    # {"kind": "event"|"manual"|"schedule", "event_type": "..."}
    trigger = Column(JsonType, nullable=False, default=dict)
    # {"nodes": [...], "edges": [...]}
    graph = Column(JsonType, nullable=False, default=dict)

    status = Column(String, nullable=False, default="draft", server_default="draft")

    requires_approval = Column(Boolean, nullable=False, default=False, server_default=false())
    approval_status = Column(String, nullable=False, default="none", server_default="none")
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_automations_org_status", "org_id", "status"),
    )

    @property
    def is_approved(self) -> bool:
        return not self.requires_approval or self.approval_status == "approved"

    def matches_event(self, event_type: str) -> bool:
        trigger = self.trigger or {}
        return trigger.get("kind") == "event" and trigger.get("event_type") == event_type


class AutomationApproval(Base):
    __tablename__ = "automation_approvals"

    id = Column(Integer, primary_key=True)
    automation_id = Column(String, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False, index=True)

    action = Column(String, nullable=False)
    actor_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
