import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from automation_runner.core.errors import (
    ApprovalRequiredError,
    AutomationNotFoundError,
    InvalidGraphError,
    SplitConfigurationError,
)
from automation_runner.database import SessionLocal
from automation_runner.models.automation import Automation
from automation_runner.models.automation_run import AutomationRun
from automation_runner.models.workflow import WorkflowEdge, WorkflowGraph, WorkflowNode
from automation_runner.services import run_store
from automation_runner.services.action_registry import ActionContext, ActionRegistry, default_registry
from automation_runner.services.expressions import eval_condition, substitute

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphRunResult:
    run_id: str
    status: str


def load_automation(db: Session, automation_id: str) -> Automation:
    automation = db.get(Automation, automation_id)
    if automation is None:
        raise AutomationNotFoundError(f"Automation not found: {automation_id}")
    return automation


def ensure_approved(automation: Automation) -> None:
    if not automation.is_approved:
        raise ApprovalRequiredError("Automation not approved")


def _split_arms(node: WorkflowNode) -> List[Tuple[str, float]]:
    arms = []
    for arm in node.config.get("arms") or []:
        if not isinstance(arm, dict) or arm.get("label") is None:
            raise SplitConfigurationError(f"split node {node.id} has an arm without a label")
        raw_weight = arm.get("weight")
        try:
            weight = 1.0 if raw_weight is None else float(raw_weight)
        except (TypeError, ValueError) as exc:
            raise SplitConfigurationError(f"split node {node.id} has a non-numeric weight") from exc
        if weight < 0:
            raise SplitConfigurationError(f"split node {node.id} has a negative weight")
        arms.append((str(arm["label"]), weight))
    return arms


def pick_weighted(options: List[Tuple[WorkflowEdge, float]], rng: Any) -> WorkflowEdge:
    """Cumulative-weight draw; zero-weight options can never win."""
    total = sum(weight for _, weight in options)
    if total <= 0:
        raise SplitConfigurationError("split node arms have no positive weight")

    draw = rng.random() * total
    acc = 0.0
    for edge, weight in options:
        acc += weight
        if weight > 0 and draw < acc:
            return edge

    # float rounding at the top of the range
    return [edge for edge, weight in options if weight > 0][-1]


def _delay_ms(node: WorkflowNode) -> int:
    raw = node.config.get("ms")
    if raw is None or raw == "":
        return 0
    try:
        ms = int(float(raw))
    except (TypeError, ValueError) as exc:
        raise InvalidGraphError(f"delay node {node.id} has an invalid ms value") from exc
    return max(ms, 0)


class _GraphWalk:
    def __init__(
        self,
        db: Session,
        run: AutomationRun,
        graph: WorkflowGraph,
        context: dict,
        registry: ActionRegistry,
        rng: Any,
    ):
        self.db = db
        self.run = run
        self.graph = graph
        self.context = context
        self.registry = registry
        self.rng = rng

    def execute(self, node: WorkflowNode, started_at) -> List[str]:
        """Run one node, write its success step, return the node ids to enqueue."""
        if node.type == "delay":
            return self._delay(node, started_at)
        if node.type == "condition":
            return self._condition(node, started_at)
        if node.type == "split":
            return self._split(node, started_at)
        return self._action(node, started_at)

    def _step(self, node: WorkflowNode, started_at, **fields) -> None:
        run_store.record_step(
            self.db,
            run_id=self.run.id,
            node_id=node.id,
            node_type=node.type,
            status="success",
            started_at=started_at,
            **fields,
        )

    def _delay(self, node, started_at):
        job = run_store.schedule_delayed_job(
            self.db,
            org_id=self.run.org_id,
            automation_id=self.run.automation_id,
            run_id=self.run.id,
            node_id=node.id,
            delay_ms=_delay_ms(node),
            context=self.context,
        )
        self._step(node, started_at, input=node.config, output={"scheduled_for": job.execute_at.isoformat()})
        # Successors run when the delay scheduler replays this job.
        return []

    def _condition(self, node, started_at):
        expr = str(node.config.get("expr") or "true")
        passed = eval_condition(expr, self.context)
        self._step(node, started_at, input={"expr": expr}, output={"pass": passed})

        label = "true" if passed else "false"
        return [edge.target for edge in self.graph.outgoing(node.id) if edge.condition == label]

    def _split(self, node, started_at):
        arms = _split_arms(node)
        if not arms:
            raise SplitConfigurationError("split node without arms")

        weights = {}
        for label, weight in arms:
            weights.setdefault(label, weight)

        options = [
            (edge, weights[edge.condition])
            for edge in self.graph.outgoing(node.id)
            if edge.condition is not None and edge.condition in weights
        ]
        if not options:
            raise SplitConfigurationError("split node has no matching edges")

        chosen = pick_weighted(options, self.rng)
        self._step(node, started_at, input=node.config, output={"chosen": chosen.target, "label": chosen.condition})
        return [chosen.target]

    def _action(self, node, started_at):
        handler = self.registry.get(node.name)
        action_input = substitute(node.config, self.context)
        ctx = ActionContext(
            org_id=self.run.org_id,
            automation_id=self.run.automation_id,
            run_id=self.run.id,
            db=self.db,
        )

        output = handler(ctx, action_input)

        self._step(node, started_at, input=node.config, output=output)
        return [edge.target for edge in self.graph.outgoing(node.id) if edge.condition is None]


def run_graph(
    org_id: str,
    automation_id: str,
    graph: Union[WorkflowGraph, dict],
    context: Optional[dict],
    run_id: Optional[str] = None,
    *,
    db: Optional[Session] = None,
    registry: Optional[ActionRegistry] = None,
    rng: Any = None,
    start_node_ids: Optional[Iterable[str]] = None,
) -> GraphRunResult:
    """
    Walk the graph for one run until the queue drains or a node fails.

    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    If db is None, it manages its own session and commits, also after a node failure
    so the failed step and run survive the re-raise.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if registry is None:
        registry = default_registry()
    if rng is None:
        rng = random

    try:
        automation = load_automation(db, automation_id)
        ensure_approved(automation)

        workflow = graph if isinstance(graph, WorkflowGraph) else WorkflowGraph.from_dict(graph)
        context = context or {}

        if run_id:
            run = run_store.resume_run(db, run_id)
        else:
            run = run_store.create_run(db, org_id=org_id, automation_id=automation_id, context=context)

        if start_node_ids is None:
            start_node_ids = workflow.start_node_ids()
        queue = deque(node_id for node_id in start_node_ids if node_id in workflow.nodes)

        walk = _GraphWalk(db, run, workflow, context, registry, rng)
        visited = set()

        while queue:
            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)

            node = workflow.nodes[node_id]
            started_at = run_store.utcnow()
            try:
                # Savepoint per node: a failing handler or an unstorable step row
                # leaves none of the node's writes and keeps the session usable.
                with db.begin_nested():
                    successors = walk.execute(node, started_at)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                run_store.record_step(
                    db,
                    run_id=run.id,
                    node_id=node.id,
                    node_type=node.type,
                    status="failed",
                    started_at=started_at,
                    input=node.config,
                    error=message,
                )
                run_store.mark_run_failed(db, run, message)
                logger.warning(
                    "Automation run failed",
                    extra={
                        "run_id": run.id,
                        "automation_id": automation_id,
                        "node_id": node.id,
                        "node_type": node.type,
                        "error": message,
                    },
                )
                if owns_db:
                    db.commit()
                raise

            queue.extend(successors)

        run_store.mark_run_drained(db, run)
        logger.info(
            "Automation run drained",
            extra={"run_id": run.id, "automation_id": automation_id, "status": run.status},
        )

        if owns_db:
            db.commit()

        return GraphRunResult(run_id=run.id, status=run.status)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
