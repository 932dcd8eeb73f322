# backend/tests/unit/test_validator.py
import pytest

from app.models.flow import ConditionNode, GenericNode, MessageNode, QuickReplyNode
from app.workflows.validator import validate_flow_document


def test_valid_document_builds_typed_graph():
    document = {
        "nodes": [
            {"id": "m1", "type": "message", "data": {"message": "Hi", "label": "Greeting"}},
            {"id": "c1", "type": "condition", "data": {"variable": "plan", "operator": "equals", "value": "pro", "falseNext": "m1"}},
            {"id": "q1", "type": "quickReply", "data": {"body": "Pick", "buttons": [{"id": "b1", "title": "One"}]}},
            {"id": "w1", "type": "webhook", "data": {"url": "https://example.com"}},
        ],
        "edges": [{"id": "e1", "source": "m1", "target": "c1", "sourceHandle": None}],
    }

    result = validate_flow_document(document)

    assert result["is_valid"]
    graph = result["graph"]
    assert isinstance(graph.node_by_id("m1"), MessageNode)
    assert graph.node_by_id("m1").data.content == "Hi"
    assert isinstance(graph.node_by_id("c1"), ConditionNode)
    assert graph.node_by_id("c1").data.false_next == "m1"
    assert isinstance(graph.node_by_id("q1"), QuickReplyNode)
    assert isinstance(graph.node_by_id("w1"), GenericNode)
    assert graph.node_by_id("w1").data == {"url": "https://example.com"}
    assert graph.next_target("m1") == "c1"


def test_missing_lists_mean_empty_graph():
    result = validate_flow_document({})
    assert result["is_valid"]
    assert result["graph"].entry_node() is None


@pytest.mark.parametrize("document, error_code", [
    ([], "NOT_A_MAPPING"),
    ({"nodes": {"id": "x"}}, "BAD_STRUCTURE"),
    ({"nodes": ["start"]}, "BAD_NODE"),
    ({"nodes": [{"type": "message"}]}, "BAD_NODE"),
    ({"nodes": [{"id": "c1", "type": "condition", "data": {"variable": "x", "operator": "regex"}}]}, "BAD_NODE"),
    ({"nodes": [], "edges": [{"source": "a"}]}, "BAD_EDGE"),
])
def test_invalid_documents(document, error_code):
    result = validate_flow_document(document)
    assert not result["is_valid"]
    assert result["error_code"] == error_code
    assert result["graph"] is None


def test_duplicate_node_ids_resolve_to_first():
    result = validate_flow_document({
        "nodes": [
            {"id": "m1", "type": "message", "data": {"message": "first"}},
            {"id": "m1", "type": "message", "data": {"message": "second"}},
        ],
    })
    assert result["graph"].node_by_id("m1").data.content == "first"
