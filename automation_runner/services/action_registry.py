from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from automation_runner.core.errors import UnknownActionError


@dataclass(frozen=True)
class ActionContext:
    org_id: str
    automation_id: str
    run_id: str
    db: Session


ActionHandler = Callable[[ActionContext, Dict[str, Any]], Any]


class ActionRegistry:
    """Name -> handler lookup; the only path from a graph to side effects."""

    def __init__(self, handlers: Optional[Dict[str, ActionHandler]] = None):
        self._handlers: Dict[str, ActionHandler] = {}
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(self, name: str, handler: ActionHandler) -> None:
        if not name:
            raise ValueError("Action name is required")
        if not callable(handler):
            raise ValueError(f"Handler for {name} is not callable")
        self._handlers[name] = handler

    def get(self, name: str) -> ActionHandler:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownActionError(name)
        return handler

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers


def default_registry(http_client: Optional[httpx.Client] = None) -> ActionRegistry:
    from automation_runner.services.action_handlers import (
        create_proforma,
        create_task,
        make_http_webhook,
        reserve_stock,
        send_email,
        update_deal_stage,
    )

    return ActionRegistry(
        {
            "email.send": send_email,
            "deal.update_stage": update_deal_stage,
            "task.create": create_task,
            "http.webhook": make_http_webhook(http_client),
            "proforma.create": create_proforma,
            "stock.reserve": reserve_stock,
        }
    )
