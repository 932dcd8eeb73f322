# /app/workflows/validator.py

"""
Load-time validation of stored flow documents.

This module turns the raw `{"nodes": [...], "edges": [...]}` document kept
by the Flow Store into a FlowGraph. Every node is validated against the
model of its type, so handlers receive typed payloads and never have to
trust the stored JSON.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database access
"""

from typing import Any, Dict, List, Optional, TypedDict

from pydantic import ValidationError

from app.models.flow import Edge, FlowGraph, GenericNode, Node
from app.workflows.definitions import NODE_MODELS


class ValidationResult(TypedDict):
    """Result of validating a stored flow document."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]
    graph: Optional[FlowGraph]


def _invalid(error_code: str, message: str) -> ValidationResult:
    return {
        "is_valid": False,
        "error_code": error_code,
        "message": message,
        "graph": None,
    }


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def parse_node(raw: Dict[str, Any]) -> Node:
    """
    Validate one stored node against the model of its type.

    Raises:
        ValidationError: If the node or its payload is malformed
    """
    model = NODE_MODELS.get(raw.get("type") or "", GenericNode)
    return model.model_validate(raw)


def validate_flow_document(document: Any) -> ValidationResult:
    """
    Validate a stored flow document and build its FlowGraph.

    Args:
        document: The raw document, expected to hold `nodes` and `edges` lists

    Returns:
        ValidationResult with the graph when valid, an error code and message otherwise
    """
    if not isinstance(document, dict):
        return _invalid("NOT_A_MAPPING", "Flow document must be an object with nodes and edges")

    raw_nodes = document.get("nodes") or []
    raw_edges = document.get("edges") or []
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        return _invalid("BAD_STRUCTURE", "Flow nodes and edges must be lists")

    nodes: List[Node] = []
    for position, raw in enumerate(raw_nodes):
        if not isinstance(raw, dict):
            return _invalid("BAD_NODE", f"Node at position {position} is not an object")
        try:
            nodes.append(parse_node(raw))
        except ValidationError as e:
            node_id = raw.get("id", position)
            return _invalid("BAD_NODE", f"Node '{node_id}' is invalid: {_format_errors(e)}")

    edges: List[Edge] = []
    for position, raw in enumerate(raw_edges):
        try:
            edges.append(Edge.model_validate(raw))
        except ValidationError as e:
            return _invalid("BAD_EDGE", f"Edge at position {position} is invalid: {_format_errors(e)}")

    return {
        "is_valid": True,
        "error_code": None,
        "message": None,
        "graph": FlowGraph(nodes=nodes, edges=edges),
    }
