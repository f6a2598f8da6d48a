import logging
from typing import Optional

from sqlalchemy.orm import Session

from automation_runner.database import SessionLocal
from automation_runner.models.automation import Automation, AutomationApproval
from automation_runner.services.graph_executor import load_automation
from automation_runner.services.run_store import utcnow

logger = logging.getLogger(__name__)

APPROVAL_ACTIONS = ("request", "approve", "reject")


def _apply(automation: Automation, action: str, actor_id: Optional[str], notes: Optional[str]) -> str:
    if action == "request":
        automation.requires_approval = True
        automation.approval_status = "pending"
        return "requested"

    if action == "approve":
        automation.approval_status = "approved"
        automation.approved_by = actor_id
        automation.approved_at = utcnow()
        return "approved"

    automation.approval_status = "rejected"
    automation.approval_notes = notes
    return "rejected"


def apply_approval_action(
    automation_id: str,
    action: str,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    db: Optional[Session] = None,
) -> Automation:
    """
    Move an automation through request -> approve/reject and log the decision.

    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    """
    if action not in APPROVAL_ACTIONS:
        raise ValueError("Invalid action")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        automation = load_automation(db, automation_id)
        logged_action = _apply(automation, action, actor_id, notes)

        db.add(
            AutomationApproval(
                automation_id=automation.id,
                action=logged_action,
                actor_id=actor_id,
                notes=notes,
            )
        )
        db.flush()

        logger.info(
            "Automation approval updated",
            extra={
                "automation_id": automation.id,
                "approval_action": logged_action,
                "actor_id": actor_id,
            },
        )

        if owns_db:
            db.commit()

        return automation
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
