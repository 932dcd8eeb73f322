# /app/workflows/engine.py

"""
Bot flow execution engine.

FlowInterpreter walks a bot's flow graph for one session:
- Resolves the start position (requested node, else the entry node)
- Dispatches each node to the handler registered for its type
- Passes through node types that have no handler yet
- Suspends when a handler asks to stop or wait for input
- Bounds every walk with a step ceiling so cyclic graphs terminate
- Persists the session's final position, variables and status
- Hands the collected side effects to the effect runner

One call walks one session. Callers must not run two walks of the same
session at once; see app.utils.session_lock.
"""

import random
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog

from app.models.flow import (
    FlowGraph,
    Node,
    OutboundSend,
    RunRequest,
    RunResult,
    SessionState,
    SessionStatus,
)
from app.utils.metrics import bot_runs_counter, bot_steps_histogram, handler_failures_counter
from app.workflows.context import ExecutionContext
from app.workflows.definitions import DEFAULT_MAX_STEPS
from app.workflows.effects import EffectRunner
from app.workflows.errors import (
    FlowNotFound,
    HandlerFailure,
    InvalidFlowDefinition,
    InvalidStartPosition,
    PersistenceFailure,
)
from app.workflows.interfaces import FlowStore, MessageSink, SessionStore
from app.workflows.registry import NodeHandlerRegistry
from app.workflows.validator import validate_flow_document

log = structlog.get_logger(__name__)


class FlowInterpreter:
    def __init__(
        self,
        flow_store: FlowStore,
        session_store: SessionStore,
        message_sink: MessageSink,
        registry: NodeHandlerRegistry,
        effect_runner: Optional[EffectRunner] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        rng: Optional[random.Random] = None,
    ):
        self.flow_store = flow_store
        self.session_store = session_store
        self.message_sink = message_sink
        self.registry = registry
        self.effect_runner = effect_runner
        self.max_steps = max_steps
        self.rng = rng or random.Random()

    # ==================== Helper Methods ====================

    async def load_graph(self, bot_id: str) -> FlowGraph:
        """
        Fetch and validate the flow of a bot.

        Raises:
            FlowNotFound: If the Flow Store has no flow for the bot
            InvalidFlowDefinition: If the stored flow fails validation
        """
        document = await self.flow_store.get_flow(bot_id)
        if document is None:
            raise FlowNotFound(bot_id)

        validation = validate_flow_document(document)
        if not validation["is_valid"]:
            raise InvalidFlowDefinition(bot_id, validation["message"])
        return validation["graph"]

    async def _load_session(self, request: RunRequest) -> SessionState:
        session = await self.session_store.load_session(request.session_id)
        if session is None:
            return SessionState(
                session_id=request.session_id,
                bot_id=request.bot_id,
                contact_id=request.contact_id,
            )

        if session.bot_id != request.bot_id:
            log.warning("session_bot_mismatch", session_id=request.session_id,
                        stored_bot_id=session.bot_id, bot_id=request.bot_id)
        # Work on a copy so a failed walk never leaks into the stored object
        session = session.model_copy(deep=True)
        session.bot_id = request.bot_id
        if request.contact_id:
            session.contact_id = request.contact_id
        return session

    @staticmethod
    def _resolve_start(graph: FlowGraph, current_node_id: Optional[str]) -> Optional[Node]:
        if current_node_id:
            node = graph.node_by_id(current_node_id)
            if node is None:
                raise InvalidStartPosition(current_node_id)
            return node
        return graph.entry_node()

    # ==================== Execution ====================

    async def run(self, request: RunRequest) -> RunResult:
        """
        Walk the flow of `request.bot_id` for one session.

        Returns:
            RunResult with the number of steps that completed and advanced
            the walk, and the session's final status and position

        Raises:
            FlowNotFound, InvalidFlowDefinition: Nothing was executed
            HandlerFailure: A handler raised; the session was saved at the failing node
            PersistenceFailure: The walk ran but its final state could not be saved
        """
        bound = log.bind(bot_id=request.bot_id, session_id=request.session_id)

        graph = await self.load_graph(request.bot_id)
        session = await self._load_session(request)

        if session.status.is_terminal:
            bound.info("session_already_finished", status=session.status.value)
            bot_runs_counter.labels(outcome="noop").inc()
            return RunResult(executed_steps=0, status=session.status, current_node_id=session.current_node_id)

        try:
            start = self._resolve_start(graph, request.current_node_id)
        except InvalidStartPosition as e:
            bound.warning("invalid_start_position", node_id=e.node_id)
            bot_runs_counter.labels(outcome="noop").inc()
            return RunResult(executed_steps=0, status=session.status, current_node_id=session.current_node_id)

        if start is None:
            bound.info("flow_has_no_nodes")
            bot_runs_counter.labels(outcome="noop").inc()
            return RunResult(executed_steps=0, status=session.status, current_node_id=session.current_node_id)

        if session.status == SessionStatus.WAITING_FOR_INPUT and request.input_text is not None:
            session.status = SessionStatus.ACTIVE

        context = ExecutionContext(
            bot_id=request.bot_id,
            graph=graph,
            session=session,
            message_sink=self.message_sink,
            input_text=request.input_text,
            resume_node_id=request.current_node_id,
            rng=self.rng,
        )
        effects: List[OutboundSend] = []

        steps, position, status, failure = await self._walk(graph, start, context, effects, bound)

        session.current_node_id = position
        session.status = status
        session.updated_at = datetime.now(timezone.utc)

        effect_failures = await self.effect_runner.run(effects) if self.effect_runner else []

        try:
            await self.session_store.save_session(session.session_id, session)
        except Exception as e:
            bound.error("session_save_failed", error=str(e), executed_steps=steps, exc_info=True)
            if failure is None:
                bot_runs_counter.labels(outcome="persistence_failure").inc()
                persistence_failure = PersistenceFailure(session.session_id, steps, e)
                persistence_failure.effect_failures = effect_failures
                raise persistence_failure from e

        bot_steps_histogram.observe(steps)

        if failure is not None:
            bot_runs_counter.labels(outcome="handler_failure").inc()
            failure.effect_failures = effect_failures
            raise failure from failure.error

        bot_runs_counter.labels(outcome=status.value).inc()
        bound.info("walk_finished", executed_steps=steps, status=status.value, current_node_id=position)
        return RunResult(
            executed_steps=steps,
            status=status,
            current_node_id=position,
            effect_failures=effect_failures,
        )

    async def _walk(
        self,
        graph: FlowGraph,
        node: Node,
        context: ExecutionContext,
        effects: List[OutboundSend],
        bound,
    ) -> Tuple[int, str, SessionStatus, Optional[HandlerFailure]]:
        """Run the bounded loop. Returns (steps, position, status, failure)."""
        steps = 0

        while True:
            if steps >= self.max_steps:
                bound.warning("step_ceiling_reached", max_steps=self.max_steps, next_node_id=node.id)
                return steps, node.id, SessionStatus.ACTIVE, None

            handler = self.registry.get(node.type)

            if handler is None:
                # Unknown types behave as pass-through nodes
                bound.debug("node_passthrough", node_id=node.id, node_type=node.type)
                next_id = graph.next_target(node.id)
            else:
                variables_before = dict(context.session.variables)
                try:
                    result = await handler(node, context)
                except Exception as e:
                    context.session.variables = variables_before
                    handler_failures_counter.labels(node_type=node.type).inc()
                    bound.error("node_handler_failed", node_id=node.id, node_type=node.type,
                                executed_steps=steps, exc_info=True)
                    return steps, node.id, SessionStatus.ACTIVE, HandlerFailure(node.id, node.type, steps, e)

                effects.extend(result.effects)

                if result.stop_execution:
                    if result.wait_for_input:
                        status = SessionStatus.WAITING_FOR_INPUT
                    elif graph.outgoing(node.id):
                        status = SessionStatus.ACTIVE
                    else:
                        status = SessionStatus.COMPLETED
                    bound.info("walk_suspended", node_id=node.id, status=status.value)
                    return steps, node.id, status, None

                next_id = result.next_node_id
                if next_id is None and result.use_default_edge:
                    next_id = graph.next_target(node.id)

            steps += 1

            if next_id is None:
                return steps, node.id, SessionStatus.COMPLETED, None

            next_node = graph.node_by_id(next_id)
            if next_node is None:
                bound.warning("dangling_edge_target", node_id=node.id, target=next_id)
                return steps, node.id, SessionStatus.COMPLETED, None

            node = next_node
