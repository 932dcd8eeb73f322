# backend/tests/unit/test_handlers.py
import math
import random

import pytest

from app.models.flow import FlowGraph, SessionState
from app.workflows.context import ExecutionContext
from app.workflows.handlers import (
    _as_number,
    evaluate_condition,
    handle_ab_test,
    handle_handoff,
    handle_input,
    interpolate,
    loose_equals,
)
from app.workflows.validator import parse_node


def make_context(message_sink, variables=None, input_text=None, resume_node_id=None, graph=None, rng=None):
    return ExecutionContext(
        bot_id="bot-1",
        graph=graph or FlowGraph(),
        session=SessionState(session_id="s1", bot_id="bot-1", variables=dict(variables or {})),
        message_sink=message_sink,
        input_text=input_text,
        resume_node_id=resume_node_id,
        rng=rng or random.Random(1),
    )


# --- interpolate ---

def test_interpolate_replaces_every_occurrence():
    assert interpolate("{{a}}-{{a}}-{{ a }}", {"a": "x"}) == "x-x-x"


def test_interpolate_leaves_undefined_tokens():
    assert interpolate("Hello {{name}}, order {{order_id}}", {"name": "Ana"}) == "Hello Ana, order {{order_id}}"


def test_interpolate_formats_scalars():
    variables = {"flag": True, "count": 3.0, "empty": None}
    assert interpolate("{{flag}} {{count}} [{{empty}}]", variables) == "true 3 []"


def test_interpolate_handles_missing_template():
    assert interpolate(None, {"a": 1}) == ""


# --- condition evaluation ---

@pytest.mark.parametrize("actual, expected, result", [
    ("pro", "pro", True),
    ("42", 42, True),
    (42, "42.0", True),
    (True, 1, True),
    (None, None, True),
    (None, "pro", False),
    (None, "", False),
    ("yes", True, False),
    ("Pro", "pro", False),
])
def test_loose_equals(actual, expected, result):
    assert loose_equals(actual, expected) is result


@pytest.mark.parametrize("operator, actual, expected, result", [
    ("equals", "a", "a", True),
    ("not_equals", "a", "b", True),
    ("not_equals", None, "b", True),
    ("contains", "order status please", "status", True),
    ("contains", None, "status", False),
    ("greater_than", "10", 9, True),
    ("greater_than", "abc", 9, False),
    ("less_than", 3, "4.5", True),
    ("less_than", None, 1, False),
])
def test_evaluate_condition(operator, actual, expected, result):
    assert evaluate_condition(operator, actual, expected) is result


def test_evaluate_condition_rejects_unknown_operator():
    with pytest.raises(ValueError):
        evaluate_condition("matches", "a", "a")


def test_as_number_of_text_is_nan():
    assert math.isnan(_as_number("ten"))


# --- input ---

@pytest.mark.asyncio
async def test_input_is_only_consumed_at_resumed_node(message_sink):
    node = parse_node({"id": "in2", "type": "input", "data": {"variable": "email"}})
    context = make_context(message_sink, input_text="a@b.c", resume_node_id="in1")

    result = await handle_input(node, context)

    assert result.stop_execution and result.wait_for_input
    assert "email" not in context.variables


@pytest.mark.asyncio
async def test_input_is_consumed_once(message_sink):
    node = parse_node({"id": "in1", "type": "input", "data": {"variable": "email"}})
    context = make_context(message_sink, input_text="a@b.c", resume_node_id="in1")

    first = await handle_input(node, context)
    second = await handle_input(node, context)

    assert not first.stop_execution
    assert context.variables["email"] == "a@b.c"
    assert second.wait_for_input


# --- handoff ---

@pytest.mark.asyncio
async def test_handoff_sets_assignment_variables(message_sink):
    node = parse_node({"id": "h1", "type": "handoff", "data": {"assignTo": "specific", "agentId": "agent-7"}})
    context = make_context(message_sink)

    result = await handle_handoff(node, context)

    assert result.stop_execution and not result.wait_for_input
    assert context.variables["handoff_assign_to"] == "specific"
    assert context.variables["handoff_agent_id"] == "agent-7"
    assert message_sink.records == []


# --- A/B test ---

@pytest.mark.asyncio
async def test_ab_test_zero_weights_split_evenly(message_sink):
    node = parse_node({
        "id": "ab", "type": "ab_test",
        "data": {"variants": [{"name": "A", "percentage": 0}, {"name": "B", "percentage": 0}]},
    })
    seen = set()
    for seed in range(30):
        context = make_context(message_sink, rng=random.Random(seed))
        await handle_ab_test(node, context)
        seen.add(context.variables["ab_ab"])

    assert seen == {"A", "B"}


@pytest.mark.asyncio
async def test_ab_test_reassigns_unknown_stored_variant(message_sink):
    graph = FlowGraph.model_validate({
        "nodes": [{"id": "ab", "type": "ab_test"}],
        "edges": [{"source": "ab", "target": "x", "sourceHandle": "variant-a"}],
    })
    node = parse_node({"id": "ab", "type": "ab_test", "data": {"variants": [{"name": "A", "percentage": 100}]}})
    context = make_context(message_sink, variables={"ab_ab": "removed"}, graph=graph)

    result = await handle_ab_test(node, context)

    assert context.variables["ab_ab"] == "A"
    assert result.next_node_id == "x"
