import json
from datetime import date, datetime, timezone

import httpx
import pytest

from automation_runner.core.errors import ActionInputError, UnknownActionError
from automation_runner.models.automation_run import AutomationRunStep
from automation_runner.models.crm import Deal, Email, Proforma, StockReservation, Task
from automation_runner.services.action_handlers import (
    create_proforma,
    create_task,
    make_http_webhook,
    reserve_stock,
    send_email,
    update_deal_stage,
)
from automation_runner.services.action_registry import ActionContext, default_registry
from automation_runner.services.graph_executor import run_graph
from automation_runner.services.run_store import to_utc_aware


@pytest.fixture
def ctx(db):
    return ActionContext(org_id="org-1", automation_id="auto-1", run_id="run-1", db=db)


def test_default_registry_exposes_builtin_actions():
    registry = default_registry()

    assert registry.names() == [
        "deal.update_stage",
        "email.send",
        "http.webhook",
        "proforma.create",
        "stock.reserve",
        "task.create",
    ]
    with pytest.raises(UnknownActionError, match="Unknown action: sms.send"):
        registry.get("sms.send")


def test_send_email_queues_outbound_message(ctx, db):
    output = send_email(ctx, {"to": "a@example.com", "cc": ["b@example.com", "c@example.com"], "subject": "Hi", "body": "Hello"})

    assert output == {"queued": True}
    email = db.query(Email).one()
    assert email.org_id == "org-1"
    assert email.to == "a@example.com"
    assert email.cc == "b@example.com, c@example.com"
    assert email.direction == "outbound"
    assert email.status == "queued"
    assert email.scheduled_at is None


def test_send_email_with_schedule_is_scheduled(ctx, db):
    send_email(ctx, {"to": "a@example.com", "schedule_at": "2026-11-01T09:00:00Z"})

    email = db.query(Email).one()
    assert email.status == "scheduled"
    assert to_utc_aware(email.scheduled_at) == datetime(2026, 11, 1, 9, tzinfo=timezone.utc)


def test_send_email_requires_recipient(ctx):
    with pytest.raises(ActionInputError, match="to"):
        send_email(ctx, {"subject": "no recipient", "to": "  "})


def test_update_deal_stage_changes_stage_within_org(ctx, db):
    db.add(Deal(id="deal-1", org_id="org-1", name="Big one", stage="lead"))
    db.add(Deal(id="deal-2", org_id="org-2", name="Other org", stage="lead"))
    db.flush()

    assert update_deal_stage(ctx, {"deal_id": "deal-1", "stage": "won"}) == {"updated": True}
    assert db.get(Deal, "deal-1").stage == "won"

    with pytest.raises(ActionInputError, match="Deal not found"):
        update_deal_stage(ctx, {"deal_id": "deal-2", "stage": "won"})
    assert db.get(Deal, "deal-2").stage == "lead"


def test_create_task_parses_due_date(ctx, db):
    output = create_task(ctx, {"title": "Call back", "due_date": "2026-11-03T10:00:00Z", "deal_id": "deal-1"})

    assert output == {"created": True}
    task = db.query(Task).one()
    assert task.title == "Call back"
    assert task.due_date == date(2026, 11, 3)
    assert task.related_deal_id == "deal-1"
    assert task.priority == "Medium"


def test_create_task_rejects_bad_date(ctx):
    with pytest.raises(ActionInputError, match="Invalid date"):
        create_task(ctx, {"title": "x", "due_date": "tomorrow"})


def test_create_proforma_numbers_sequentially_per_org(ctx, db):
    year = datetime.now(timezone.utc).year

    first = create_proforma(ctx, {"sales_order_id": "so-1", "subtotal_cents": "1000", "tax_rate": 0.2, "total_cents": 1200})
    second = create_proforma(ctx, {})

    assert first["number"] == f"PF-{year}-00001"
    assert second["number"] == f"PF-{year}-00002"

    row = db.get(Proforma, first["id"])
    assert row.subtotal_cents == 1000
    assert row.total_cents == 1200
    assert row.currency == "EUR"


def test_reserve_stock_writes_one_row_per_line(ctx, db):
    output = reserve_stock(
        ctx,
        {
            "sales_order_id": "so-9",
            "lines": [
                {"product_id": "p-1", "qty": 2, "location_id": "wh-1"},
                {"product_id": "p-2", "qty": "1.5"},
            ],
        },
    )

    assert output == {"reserved": True}
    rows = db.query(StockReservation).order_by(StockReservation.id.asc()).all()
    assert [(r.product_id, r.qty, r.location_id, r.sales_order_id) for r in rows] == [
        ("p-1", 2.0, "wh-1", "so-9"),
        ("p-2", 1.5, None, "so-9"),
    ]


def test_reserve_stock_rejects_line_without_product(ctx):
    with pytest.raises(ActionInputError, match="product_id"):
        reserve_stock(ctx, {"lines": [{"qty": 1}]})


def test_http_webhook_sends_json_body(ctx):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, text="accepted")

    webhook = make_http_webhook(httpx.Client(transport=httpx.MockTransport(handler)))

    output = webhook(
        ctx,
        {
            "url": "https://hooks.example.com/deal",
            "method": "put",
            "headers": {"X-Token": "abc"},
            "body": {"deal": "deal-1", "amount": 10},
        },
    )

    assert output == {"status": 202, "body": "accepted"}
    request = seen[0]
    assert request.method == "PUT"
    assert request.headers["X-Token"] == "abc"
    assert json.loads(request.content) == {"deal": "deal-1", "amount": 10}


def test_http_webhook_without_body_sends_nothing(ctx):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="ok")

    webhook = make_http_webhook(httpx.Client(transport=httpx.MockTransport(handler)))
    webhook(ctx, {"url": "https://hooks.example.com/ping"})

    assert seen[0].method == "POST"
    assert seen[0].content == b""


def test_stock_reservation_is_all_or_nothing(make_automation, db):
    automation = make_automation(
        {
            "nodes": [
                {
                    "id": "reserve",
                    "type": "action",
                    "name": "stock.reserve",
                    "config": {"lines": [{"product_id": "p-1", "qty": 1}, {"qty": 2}]},
                }
            ],
            "edges": [],
        }
    )

    with pytest.raises(ActionInputError):
        run_graph(automation.org_id, automation.id, automation.graph, {})

    assert db.query(StockReservation).count() == 0
    step = db.query(AutomationRunStep).one()
    assert step.status == "failed"
    assert "product_id" in step.error


def test_graph_action_uses_substituted_context(make_automation, db):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    registry = default_registry(httpx.Client(transport=httpx.MockTransport(handler)))
    automation = make_automation(
        {
            "nodes": [
                {
                    "id": "mail",
                    "type": "action",
                    "name": "email.send",
                    "config": {"to": "{{context.payload.email}}", "subject": "Welcome {{context.payload.name}}"},
                },
                {
                    "id": "hook",
                    "type": "action",
                    "name": "http.webhook",
                    "config": {"url": "https://hooks.example.com/x", "body": {"who": "{{context.payload.name}}"}},
                },
            ],
            "edges": [{"from": "mail", "to": "hook"}],
        }
    )

    result = run_graph(
        automation.org_id,
        automation.id,
        automation.graph,
        {"payload": {"email": "ana@example.com", "name": "Ana"}},
        registry=registry,
    )

    assert result.status == "success"
    email = db.query(Email).one()
    assert email.to == "ana@example.com"
    assert email.subject == "Welcome Ana"
    assert requests == [{"who": "Ana"}]
