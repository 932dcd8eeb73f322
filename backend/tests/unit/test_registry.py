# backend/tests/unit/test_registry.py
import pytest

from app.models.flow import NodeHandlerResult
from app.workflows.errors import HandlerRegistrationError
from app.workflows.registry import NodeHandlerRegistry, build_default_registry


async def noop(node, context):
    return NodeHandlerResult()


def test_default_registry_covers_builtin_types():
    registry = build_default_registry()
    for node_type in ["start", "message", "condition", "input", "quick_reply", "quickReply", "handoff", "ab_test", "abTest"]:
        assert registry.has(node_type)
    assert registry.get("webhook") is None


def test_duplicate_registration_is_rejected():
    registry = NodeHandlerRegistry({"custom": noop})
    with pytest.raises(HandlerRegistrationError):
        registry.register("custom", noop)


def test_replace_overrides_existing_handler():
    async def other(node, context):
        return NodeHandlerResult(stop_execution=True)

    registry = NodeHandlerRegistry({"custom": noop})
    registry.register("custom", other, replace=True)

    assert registry.get("custom") is other
    assert len(registry) == 1


def test_empty_type_is_rejected():
    with pytest.raises(HandlerRegistrationError):
        NodeHandlerRegistry().register("", noop)


def test_registries_are_independent():
    first = build_default_registry()
    second = NodeHandlerRegistry()
    second.register("message", noop)

    assert first.get("message") is not noop
    assert second.types() == ["message"]
