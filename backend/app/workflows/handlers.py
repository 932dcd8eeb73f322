# /app/workflows/handlers.py

"""
Built-in node handlers.

Each handler receives its typed node and the execution context and returns
a NodeHandlerResult. Handlers never send over a channel themselves: a
message to deliver is returned as an OutboundSend effect.
"""

import logging
import math
import re
from typing import List, Optional

from app.models.flow import (
    ABTestNode,
    ConditionNode,
    HandoffNode,
    InputNode,
    MessageNode,
    Node,
    NodeHandlerResult,
    OutboundSend,
    QuickReplyButton,
    QuickReplyNode,
    Scalar,
)
from app.workflows.context import ExecutionContext
from app.workflows.definitions import (
    AB_TEST_VARIABLE_PREFIX,
    AB_VARIANT_HANDLE_PREFIX,
    CONDITION_FALSE_HANDLE,
    CONDITION_TRUE_HANDLE,
    HANDOFF_AGENT_VARIABLE,
    HANDOFF_ASSIGN_VARIABLE,
    HANDOFF_QUEUE_VARIABLE,
    LAST_INPUT_VARIABLE,
)

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w.\-]*)\s*\}\}")


# ==================== Helpers ====================

def interpolate(template: str, variables: dict) -> str:
    """
    Replace every `{{name}}` token with the variable's value.
    Tokens naming undefined variables are left as written.
    """
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "" if value is None else _as_text(value)

    return _TOKEN_PATTERN.sub(_replace, template or "")


def _as_text(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Scalar) -> float:
    """Numeric coercion; anything that is not a number becomes NaN."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def loose_equals(actual: Scalar, expected: Scalar) -> bool:
    """
    Equality with coercion between the text a flow author typed and the
    values collected at runtime: numbers compare numerically, booleans as
    1/0, everything else as text. None is only equal to None.
    """
    if actual is None or expected is None:
        return actual is None and expected is None
    if type(actual) is type(expected):
        return actual == expected
    if isinstance(actual, (int, float)) or isinstance(expected, (int, float)):
        return _as_number(actual) == _as_number(expected)
    return _as_text(actual) == _as_text(expected)


def evaluate_condition(operator: str, actual: Scalar, expected: Scalar) -> bool:
    if operator == "equals":
        return loose_equals(actual, expected)
    if operator == "not_equals":
        return not loose_equals(actual, expected)
    if operator == "contains":
        if actual is None:
            return False
        return _as_text(expected if expected is not None else "") in _as_text(actual)
    if operator == "greater_than":
        return _as_number(actual) > _as_number(expected)
    if operator == "less_than":
        return _as_number(actual) < _as_number(expected)
    raise ValueError(f"Unknown condition operator '{operator}'")


async def _emit(
    node: Node,
    context: ExecutionContext,
    text: str,
    buttons: Optional[List[QuickReplyButton]] = None,
) -> List[OutboundSend]:
    """Record an outbound message and build its delivery effect."""
    session = context.session
    metadata = {"node_id": node.id, "bot_id": context.bot_id, "source": "bot"}
    if buttons:
        metadata["buttons"] = [button.model_dump() for button in buttons]

    message_id = await context.message_sink.record(
        session.message_conversation_id, text, "outbound", metadata
    )

    if not (session.platform and session.recipient):
        logger.debug(f"Session {session.session_id} has no channel address, message {message_id} only recorded")
        return []

    return [
        OutboundSend(
            platform=session.platform,
            recipient=session.recipient,
            text=text,
            buttons=buttons or [],
            metadata={**metadata, "message_id": message_id, "session_id": session.session_id},
        )
    ]


# ==================== Handlers ====================

async def handle_start(node: Node, context: ExecutionContext) -> NodeHandlerResult:
    return NodeHandlerResult()


async def handle_message(node: MessageNode, context: ExecutionContext) -> NodeHandlerResult:
    logger.info(f"[Message Node] Executing node {node.id}")
    text = interpolate(node.data.content, context.variables)
    effects = await _emit(node, context, text)
    return NodeHandlerResult(next_node_id=node.data.next_id, effects=effects)


async def handle_condition(node: ConditionNode, context: ExecutionContext) -> NodeHandlerResult:
    data = node.data
    actual = context.variables.get(data.variable)
    result = evaluate_condition(data.operator, actual, data.value)
    logger.info(f"[Condition Node] {node.id}: {data.variable} {data.operator} {data.value!r} -> {result}")

    if result:
        next_id = data.true_next or context.graph.next_target(node.id, CONDITION_TRUE_HANDLE)
    else:
        next_id = data.false_next or context.graph.next_target(node.id, CONDITION_FALSE_HANDLE)

    return NodeHandlerResult(next_node_id=next_id, use_default_edge=False)


async def handle_input(node: InputNode, context: ExecutionContext) -> NodeHandlerResult:
    text = context.take_input(node.id)
    if text is None:
        logger.info(f"[Input Node] Waiting for input at {node.id}")
        return NodeHandlerResult(stop_execution=True, wait_for_input=True)

    context.set_variable(LAST_INPUT_VARIABLE, text)
    if node.data.variable:
        context.set_variable(node.data.variable, text)
    return NodeHandlerResult()


def _match_button(buttons: List[QuickReplyButton], text: str) -> Optional[QuickReplyButton]:
    wanted = text.strip().lower()
    for button in buttons:
        if button.id.lower() == wanted or button.title.strip().lower() == wanted:
            return button
    return None


async def handle_quick_reply(node: QuickReplyNode, context: ExecutionContext) -> NodeHandlerResult:
    data = node.data
    text = context.take_input(node.id)
    if text is None:
        body = interpolate(data.body, context.variables)
        effects = await _emit(node, context, body, data.buttons)
        return NodeHandlerResult(stop_execution=True, wait_for_input=True, effects=effects)

    context.set_variable(LAST_INPUT_VARIABLE, text)
    button = _match_button(data.buttons, text)
    if button is None:
        logger.info(f"[Quick Reply Node] {node.id}: no button matches the reply, following default edge")
        return NodeHandlerResult()

    if data.variable:
        context.set_variable(data.variable, button.title)
    return NodeHandlerResult(next_node_id=context.graph.next_target(node.id, button.id))


async def handle_handoff(node: HandoffNode, context: ExecutionContext) -> NodeHandlerResult:
    data = node.data
    logger.info(f"[Handoff Node] {node.id}: handing session {context.session.session_id} to {data.assign_to}")

    context.set_variable(HANDOFF_ASSIGN_VARIABLE, data.assign_to)
    if data.agent_id:
        context.set_variable(HANDOFF_AGENT_VARIABLE, data.agent_id)
    if data.queue_name:
        context.set_variable(HANDOFF_QUEUE_VARIABLE, data.queue_name)

    effects = []
    if data.message:
        effects = await _emit(node, context, interpolate(data.message, context.variables))
    return NodeHandlerResult(stop_execution=True, effects=effects)


async def handle_ab_test(node: ABTestNode, context: ExecutionContext) -> NodeHandlerResult:
    variants = node.data.variants
    if not variants:
        return NodeHandlerResult()

    key = f"{AB_TEST_VARIABLE_PREFIX}{node.id}"
    names = {variant.name for variant in variants}
    chosen = context.variables.get(key)

    if chosen not in names:
        weights = [variant.percentage for variant in variants]
        if sum(weights) <= 0:
            weights = [1.0] * len(variants)
        chosen = context.rng.choices([variant.name for variant in variants], weights=weights, k=1)[0]
        context.set_variable(key, chosen)

    handle = f"{AB_VARIANT_HANDLE_PREFIX}{str(chosen).lower()}"
    logger.info(f"[A/B Test Node] {node.id}: variant {chosen}")
    return NodeHandlerResult(next_node_id=context.graph.next_target(node.id, handle))
