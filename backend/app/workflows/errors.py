# /app/workflows/errors.py

"""
Exceptions raised by the bot flow runner.

Every error a caller of `FlowInterpreter.run` can see derives from
`FlowError`. Errors that interrupt a walk carry the number of steps that
completed before the interruption.
"""

from typing import Optional


class FlowError(Exception):
    """Base class for bot flow runner errors."""

    kind = "flow_error"


class FlowNotFound(FlowError):
    """No flow is stored for the requested bot."""

    kind = "flow_not_found"

    def __init__(self, bot_id: str):
        self.bot_id = bot_id
        super().__init__(f"No flow found for bot '{bot_id}'")


class InvalidFlowDefinition(FlowError):
    """The stored flow could not be validated into a flow graph."""

    kind = "invalid_flow_definition"

    def __init__(self, bot_id: str, reason: str):
        self.bot_id = bot_id
        self.reason = reason
        super().__init__(f"Flow of bot '{bot_id}' is invalid: {reason}")


class InvalidStartPosition(FlowError):
    """
    The requested start node is not part of the graph.

    Never raised out of `run`: the interpreter reports it as a zero-step
    result. Kept as a type so callers and logs can name the condition.
    """

    kind = "invalid_start_position"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' is not part of the flow")


class WalkInterrupted(FlowError):
    """A walk stopped on an error after `executed_steps` completed steps."""

    def __init__(self, message: str, executed_steps: int, node_id: Optional[str] = None):
        self.executed_steps = executed_steps
        self.node_id = node_id
        # Deliveries of the effects produced before the error that failed
        self.effect_failures: list = []
        super().__init__(message)


class HandlerFailure(WalkInterrupted):
    """A node handler raised; the session was kept at the failing node."""

    kind = "handler_failure"

    def __init__(self, node_id: str, node_type: str, executed_steps: int, error: BaseException):
        self.node_type = node_type
        self.error = error
        super().__init__(
            f"Handler for node '{node_id}' ({node_type}) failed: {error}",
            executed_steps,
            node_id,
        )


class PersistenceFailure(WalkInterrupted):
    """The final session state could not be saved."""

    kind = "persistence_failure"

    def __init__(self, session_id: str, executed_steps: int, error: BaseException):
        self.session_id = session_id
        self.error = error
        super().__init__(f"Could not save session '{session_id}': {error}", executed_steps)


class HandlerRegistrationError(ValueError):
    """A handler is already registered for a node type."""


class ChannelSendError(Exception):
    """The Channel Sender could not deliver a message."""

    def __init__(self, platform: str, recipient: str, reason: str):
        self.platform = platform
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Sending to {platform}:{recipient[:4]}... failed: {reason}")
