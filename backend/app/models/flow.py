# /app/models/flow.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr

# Pure data models for bot flows and their execution sessions.
# Stored flow documents use the dashboard's camelCase keys, so every
# model accepts both spellings on input.

Scalar = Union[str, int, float, bool, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _FlowModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ==================== Node payloads ====================

class MessageData(_FlowModel):
    label: Optional[str] = None
    content: str = Field(default="", validation_alias=AliasChoices("content", "message", "text"))
    next_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("next_id", "nextId"))


ConditionOperator = Literal["equals", "not_equals", "contains", "greater_than", "less_than"]


class ConditionData(_FlowModel):
    label: Optional[str] = None
    variable: str
    operator: ConditionOperator = "equals"
    value: Scalar = None
    true_next: Optional[str] = Field(default=None, validation_alias=AliasChoices("true_next", "trueNext"))
    false_next: Optional[str] = Field(default=None, validation_alias=AliasChoices("false_next", "falseNext"))


class InputData(_FlowModel):
    label: Optional[str] = None
    variable: Optional[str] = Field(default=None, validation_alias=AliasChoices("variable", "saveAs", "save_as"))


class QuickReplyButton(_FlowModel):
    id: str
    title: str


class QuickReplyData(_FlowModel):
    label: Optional[str] = None
    body: str = Field(default="", validation_alias=AliasChoices("body", "message"))
    buttons: List[QuickReplyButton] = Field(default_factory=list)
    variable: Optional[str] = Field(default=None, validation_alias=AliasChoices("variable", "saveAs", "save_as"))


class HandoffData(_FlowModel):
    label: Optional[str] = None
    assign_to: Literal["available", "specific", "queue"] = Field(
        default="available", validation_alias=AliasChoices("assign_to", "assignTo")
    )
    agent_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("agent_id", "agentId"))
    queue_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("queue_name", "queueName"))
    message: Optional[str] = None


class ABVariant(_FlowModel):
    name: str
    percentage: float = Field(default=0, ge=0)


class ABTestData(_FlowModel):
    label: Optional[str] = None
    variants: List[ABVariant] = Field(
        default_factory=lambda: [ABVariant(name="A", percentage=50), ABVariant(name="B", percentage=50)]
    )


# ==================== Nodes ====================

class BaseNode(_FlowModel):
    """A node of a flow graph. `type` is kept exactly as stored."""
    id: str
    type: str


class StartNode(BaseNode):
    data: Dict[str, Any] = Field(default_factory=dict)


class MessageNode(BaseNode):
    data: MessageData = Field(default_factory=MessageData)


class ConditionNode(BaseNode):
    data: ConditionData


class InputNode(BaseNode):
    data: InputData = Field(default_factory=InputData)


class QuickReplyNode(BaseNode):
    data: QuickReplyData = Field(default_factory=QuickReplyData)


class HandoffNode(BaseNode):
    data: HandoffData = Field(default_factory=HandoffData)


class ABTestNode(BaseNode):
    data: ABTestData = Field(default_factory=ABTestData)


class GenericNode(BaseNode):
    """Node of a type with no dedicated model; its payload is kept untouched."""
    data: Dict[str, Any] = Field(default_factory=dict)


Node = Union[
    StartNode, MessageNode, ConditionNode, InputNode,
    QuickReplyNode, HandoffNode, ABTestNode, GenericNode,
]


class Edge(_FlowModel):
    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("source_handle", "sourceHandle")
    )


class FlowGraph(_FlowModel):
    """
    Validated flow graph of one bot. Lookups preserve stored order, so
    "first" always means first in insertion order.
    """
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    _index: Dict[str, Node] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        for node in self.nodes:
            # Duplicate ids resolve to the first occurrence
            self._index.setdefault(node.id, node)

    def node_by_id(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self._index.get(node_id)

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def next_target(self, node_id: str, source_handle: Optional[str] = None) -> Optional[str]:
        """Target of the first edge leaving `node_id`, optionally restricted to one handle."""
        for edge in self.edges:
            if edge.source != node_id:
                continue
            if source_handle is not None and edge.source_handle != source_handle:
                continue
            return edge.target
        return None

    def entry_node(self) -> Optional[Node]:
        for node in self.nodes:
            if node.type == "start":
                return node
        return self.nodes[0] if self.nodes else None


# ==================== Sessions ====================

class SessionStatus(str, Enum):
    ACTIVE = "active"
    WAITING_FOR_INPUT = "waiting_for_input"
    COMPLETED = "completed"
    DROPPED = "dropped"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.DROPPED)


class SessionState(_FlowModel):
    """Persisted state of one contact's run through a bot flow."""
    session_id: str = Field(..., description="Session identifier")
    bot_id: str = Field(..., description="Bot whose flow this session runs")
    contact_id: Optional[str] = Field(default=None, description="Contact the session talks to")
    conversation_id: Optional[str] = Field(default=None, description="Conversation outbound messages belong to")
    platform: Optional[str] = Field(default=None, description="Channel used to reach the contact")
    recipient: Optional[str] = Field(default=None, description="Address of the contact on that channel")
    current_node_id: Optional[str] = Field(default=None, description="None until the flow has started")
    variables: Dict[str, Scalar] = Field(default_factory=dict, description="Values collected during the session")
    status: SessionStatus = Field(default=SessionStatus.ACTIVE, description="Execution status")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def message_conversation_id(self) -> str:
        return self.conversation_id or self.session_id


# ==================== Effects and results ====================

class OutboundSend(_FlowModel):
    """A message the Channel Sender must deliver once the step has run."""
    kind: Literal["outbound_send"] = "outbound_send"
    platform: str
    recipient: str
    text: str
    buttons: List[QuickReplyButton] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EffectFailure(_FlowModel):
    effect: OutboundSend
    error: str


@dataclass
class NodeHandlerResult:
    """
    Outcome of one node handler call.

    next_node_id: explicit next node; when None and `use_default_edge` is
        set, the interpreter follows the first outgoing edge.
    stop_execution: suspend the walk at this node.
    wait_for_input: the suspension waits for the contact's reply.
    use_default_edge: False when the handler resolved branching itself.
    effects: side effects to run after the step.
    """
    next_node_id: Optional[str] = None
    stop_execution: bool = False
    wait_for_input: bool = False
    use_default_edge: bool = True
    effects: List[OutboundSend] = field(default_factory=list)


class RunRequest(_FlowModel):
    bot_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    contact_id: Optional[str] = None
    current_node_id: Optional[str] = None
    input_text: Optional[str] = None


class RunResult(_FlowModel):
    executed_steps: int = 0
    status: Optional[SessionStatus] = None
    current_node_id: Optional[str] = None
    effect_failures: List[EffectFailure] = Field(default_factory=list)
