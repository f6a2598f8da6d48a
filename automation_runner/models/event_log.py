from sqlalchemy import Boolean, Column, DateTime, Integer, String, false, func
from sqlalchemy.schema import Index

from automation_runner.database import Base, JsonType


class EventLog(Base):
    __tablename__ = "event_log"

    id = Column(Integer, primary_key=True)

    org_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)

    subject_type = Column(String, nullable=True)
    subject_id = Column(String, nullable=True)

    payload = Column(JsonType, nullable=False, default=dict)

    processed = Column(Boolean, nullable=False, default=False, server_default=false())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_event_log_processed", "processed", "occurred_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_type": self.event_type,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "payload": self.payload,
            "occurred_at": None if self.occurred_at is None else self.occurred_at.isoformat(),
        }
