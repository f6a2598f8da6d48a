from fastapi.testclient import TestClient

from automation_runner.database import SessionLocal
from automation_runner.main import app
from automation_runner.models.automation_run import AutomationRun
from automation_runner.models.crm import Email
from automation_runner.models.delayed_job import DelayedJob
from automation_runner.models.event_log import EventLog
from automation_runner.routers import runner as runner_router
from automation_runner.services.runner import RunnerPassResult

client = TestClient(app)

WELCOME_GRAPH = {
    "nodes": [
        {
            "id": "check",
            "type": "condition",
            "config": {"expr": "context.payload.amount >= 1000"},
        },
        {
            "id": "mail",
            "type": "action",
            "name": "email.send",
            "config": {"to": "{{context.payload.owner}}", "subject": "Large deal {{context.subject_id}}"},
        },
    ],
    "edges": [{"from": "check", "to": "mail", "condition": "true"}],
}


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_runner_processes_events_end_to_end(make_automation, make_event):
    automation = make_automation(WELCOME_GRAPH)
    big = make_event(subject_id="deal-big", payload={"amount": 5000, "owner": "owner@example.com"})
    small = make_event(subject_id="deal-small", payload={"amount": 10, "owner": "owner@example.com"})

    resp = client.post("/automation-runner", json={"mode": "events"})

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}

    db = SessionLocal()
    try:
        emails = db.query(Email).all()
        assert [(e.to, e.subject, e.status) for e in emails] == [
            ("owner@example.com", "Large deal deal-big", "queued")
        ]
        runs = db.query(AutomationRun).filter(AutomationRun.automation_id == automation.id).all()
        assert len(runs) == 2
        assert {r.status for r in runs} == {"success"}
        assert db.get(EventLog, big.id).processed is True
        assert db.get(EventLog, small.id).processed is True
    finally:
        db.close()


def test_runner_without_body_defaults_to_all(monkeypatch):
    seen = []

    def fake_pass(mode="all", **kwargs):
        seen.append(mode)
        return RunnerPassResult(mode=mode, events=None, delays=None)

    monkeypatch.setattr(runner_router, "run_automation_pass", fake_pass)

    resp = client.post("/automation-runner")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert seen == ["all"]


def test_runner_rejects_unknown_mode():
    resp = client.post("/automation-runner", json={"mode": "everything"})

    assert resp.status_code == 400
    assert "everything" in resp.json()["error"]


def test_runner_reports_pass_failure_as_500(monkeypatch):
    def broken_pass(mode="all", **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(runner_router, "run_automation_pass", broken_pass)

    resp = client.post("/automation-runner", json={"mode": "delays"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "database unavailable"}


def test_runner_delay_mode_leaves_events_alone(make_automation, make_event):
    make_automation(WELCOME_GRAPH)
    event = make_event(payload={"amount": 5000, "owner": "owner@example.com"})

    resp = client.post("/automation-runner", json={"mode": "delays"})

    assert resp.status_code == 200
    db = SessionLocal()
    try:
        assert db.get(EventLog, event.id).processed is False
        assert db.query(AutomationRun).count() == 0
        assert db.query(DelayedJob).count() == 0
    finally:
        db.close()
