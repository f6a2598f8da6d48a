from automation_runner.models.automation import Automation, AutomationApproval
from automation_runner.models.automation_run import AutomationRun, AutomationRunStep
from automation_runner.models.crm import Deal, Email, Proforma, StockReservation, Task
from automation_runner.models.delayed_job import DelayedJob
from automation_runner.models.event_log import EventLog

__all__ = [
    "Automation",
    "AutomationApproval",
    "AutomationRun",
    "AutomationRunStep",
    "Deal",
    "DelayedJob",
    "Email",
    "EventLog",
    "Proforma",
    "StockReservation",
    "Task",
]
