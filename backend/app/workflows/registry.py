# /app/workflows/registry.py

"""Registry mapping node types to their handlers.

A registry is built once at startup and handed to the interpreter; tests
build their own with fake handlers. Adding a node type means registering a
handler here, the interpreter itself never changes.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from app.models.flow import Node, NodeHandlerResult
from app.workflows import handlers
from app.workflows.context import ExecutionContext
from app.workflows.errors import HandlerRegistrationError

logger = logging.getLogger(__name__)

NodeHandler = Callable[[Node, ExecutionContext], Awaitable[NodeHandlerResult]]


class NodeHandlerRegistry:
    """Dispatch table from node type to handler."""

    def __init__(self, handlers: Optional[Dict[str, NodeHandler]] = None):
        self._handlers: Dict[str, NodeHandler] = {}
        for node_type, handler in (handlers or {}).items():
            self.register(node_type, handler)

    def register(self, node_type: str, handler: NodeHandler, replace: bool = False) -> None:
        """Register a handler for a node type.

        Raises:
            HandlerRegistrationError: If the type already has a handler and
                `replace` is not set
        """
        if not node_type:
            raise HandlerRegistrationError("Node type cannot be empty")
        if node_type in self._handlers and not replace:
            raise HandlerRegistrationError(f"A handler for node type '{node_type}' is already registered")

        self._handlers[node_type] = handler
        logger.debug(f"Registered node handler: {node_type}")

    def get(self, node_type: str) -> Optional[NodeHandler]:
        return self._handlers.get(node_type)

    def has(self, node_type: str) -> bool:
        return node_type in self._handlers

    def types(self) -> List[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def build_default_registry() -> NodeHandlerRegistry:
    """Registry with every built-in handler, including the dashboard's camelCase aliases."""
    registry = NodeHandlerRegistry()
    registry.register("start", handlers.handle_start)
    registry.register("message", handlers.handle_message)
    registry.register("condition", handlers.handle_condition)
    registry.register("input", handlers.handle_input)
    registry.register("quick_reply", handlers.handle_quick_reply)
    registry.register("quickReply", handlers.handle_quick_reply)
    registry.register("handoff", handlers.handle_handoff)
    registry.register("ab_test", handlers.handle_ab_test)
    registry.register("abTest", handlers.handle_ab_test)

    logger.info(f"Registered {len(registry)} node handlers")
    return registry
