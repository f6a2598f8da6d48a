import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import func

from automation_runner.core.config import get_webhook_timeout_seconds
from automation_runner.core.errors import ActionInputError
from automation_runner.models.crm import Deal, Email, Proforma, StockReservation, Task
from automation_runner.services.action_registry import ActionContext, ActionHandler

logger = logging.getLogger(__name__)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _require(input: Dict[str, Any], *fields: str) -> None:
    missing = [f for f in fields if _blank(input.get(f))]
    if missing:
        raise ActionInputError(f"Missing required input: {', '.join(missing)}")


def _optional_str(value: Any) -> Optional[str]:
    if _blank(value):
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if _blank(value):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ActionInputError(f"Invalid datetime: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_date(value: Any) -> Optional[date]:
    if _blank(value):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ActionInputError(f"Invalid date: {value}") from exc


def _int(value: Any, default: int = 0) -> int:
    if _blank(value):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError) as exc:
        raise ActionInputError(f"Invalid integer: {value}") from exc


def _float(value: Any, default: float = 0.0) -> float:
    if _blank(value):
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ActionInputError(f"Invalid number: {value}") from exc


def send_email(ctx: ActionContext, input: Dict[str, Any]) -> dict:
    _require(input, "to")
    scheduled_at = _parse_datetime(input.get("schedule_at"))

    # The mail sender picks up rows in status 'queued' (or 'scheduled' once due).
    ctx.db.add(
        Email(
            org_id=ctx.org_id,
            to=_optional_str(input.get("to")),
            cc=_optional_str(input.get("cc")),
            bcc=_optional_str(input.get("bcc")),
            subject=input.get("subject"),
            body=input.get("body"),
            deal_id=_optional_str(input.get("deal_id")),
            contact_id=_optional_str(input.get("contact_id")),
            direction="outbound",
            status="scheduled" if scheduled_at else "queued",
            scheduled_at=scheduled_at,
        )
    )
    ctx.db.flush()
    return {"queued": True}


def update_deal_stage(ctx: ActionContext, input: Dict[str, Any]) -> dict:
    _require(input, "deal_id", "stage")

    deal = (
        ctx.db.query(Deal)
        .filter(Deal.id == str(input["deal_id"]), Deal.org_id == ctx.org_id)
        .first()
    )
    if deal is None:
        raise ActionInputError(f"Deal not found: {input['deal_id']}")

    deal.stage = str(input["stage"])
    ctx.db.flush()
    return {"updated": True}


def create_task(ctx: ActionContext, input: Dict[str, Any]) -> dict:
    _require(input, "title")

    ctx.db.add(
        Task(
            org_id=ctx.org_id,
            title=str(input["title"]),
            due_date=_parse_date(input.get("due_date")),
            related_deal_id=_optional_str(input.get("deal_id")),
            related_contact_id=_optional_str(input.get("contact_id")),
            priority=_optional_str(input.get("priority")) or "Medium",
        )
    )
    ctx.db.flush()
    return {"created": True}


def make_http_webhook(client: Optional[httpx.Client] = None) -> ActionHandler:
    def http_webhook(ctx: ActionContext, input: Dict[str, Any]) -> dict:
        _require(input, "url")

        method = str(input.get("method") or "POST").upper()
        headers = input.get("headers") or {}
        body = input.get("body")

        request_kwargs: Dict[str, Any] = {"headers": headers}
        if body is not None and body != "":
            request_kwargs["json"] = body

        logger.info(
            "Calling webhook",
            extra={"run_id": ctx.run_id, "method": method, "url": input["url"]},
        )

        if client is not None:
            res = client.request(method, str(input["url"]), **request_kwargs)
        else:
            with httpx.Client(timeout=get_webhook_timeout_seconds()) as owned:
                res = owned.request(method, str(input["url"]), **request_kwargs)

        return {"status": res.status_code, "body": res.text}

    return http_webhook


def _next_proforma_number(ctx: ActionContext) -> str:
    year = datetime.now(timezone.utc).year
    count = (
        ctx.db.query(func.count(Proforma.id))
        .filter(Proforma.org_id == ctx.org_id)
        .scalar()
    )
    return f"PF-{year}-{int(count or 0) + 1:05d}"


def create_proforma(ctx: ActionContext, input: Dict[str, Any]) -> dict:
    row = Proforma(
        org_id=ctx.org_id,
        number=_next_proforma_number(ctx),
        sales_order_id=_optional_str(input.get("sales_order_id")),
        currency=_optional_str(input.get("currency")) or "EUR",
        subtotal_cents=_int(input.get("subtotal_cents")),
        tax_rate=_float(input.get("tax_rate")),
        tax_cents=_int(input.get("tax_cents")),
        total_cents=_int(input.get("total_cents")),
    )
    ctx.db.add(row)
    ctx.db.flush()
    return {"id": row.id, "number": row.number}


def reserve_stock(ctx: ActionContext, input: Dict[str, Any]) -> dict:
    lines = input.get("lines") or []
    if not isinstance(lines, list):
        raise ActionInputError("lines must be a list")

    for line in lines:
        if not isinstance(line, dict) or _blank(line.get("product_id")):
            raise ActionInputError("Every reservation line needs a product_id")
        ctx.db.add(
            StockReservation(
                org_id=ctx.org_id,
                sales_order_id=_optional_str(input.get("sales_order_id")),
                product_id=str(line["product_id"]),
                qty=_float(line.get("qty")),
                location_id=_optional_str(line.get("location_id")),
            )
        )
        ctx.db.flush()
    return {"reserved": True}
