# /app/workflows/context.py

import random
from dataclasses import dataclass, field
from typing import Optional

from app.models.flow import FlowGraph, Scalar, SessionState
from app.workflows.interfaces import MessageSink


@dataclass
class ExecutionContext:
    """
    Working state of one `run` call, shared by every handler of the walk.

    `session` is the in-memory copy the interpreter persists at the end.
    The contact's input is handed out once, and only to the node the walk
    resumed at.
    """
    bot_id: str
    graph: FlowGraph
    session: SessionState
    message_sink: MessageSink
    input_text: Optional[str] = None
    resume_node_id: Optional[str] = None
    rng: random.Random = field(default_factory=random.Random)
    _input_consumed: bool = field(default=False, repr=False)

    @property
    def variables(self) -> dict[str, Scalar]:
        return self.session.variables

    def take_input(self, node_id: str) -> Optional[str]:
        """Return the pending input if `node_id` is the resumed node, consuming it."""
        if self._input_consumed or self.input_text is None or node_id != self.resume_node_id:
            return None
        self._input_consumed = True
        return self.input_text

    def set_variable(self, name: str, value: Scalar) -> None:
        self.session.variables[name] = value
