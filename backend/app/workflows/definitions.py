# /app/workflows/definitions.py

"""
Node type definitions as pure data (no logic).

NODE_MODELS maps each stored node type to the model its payload is
validated against. Types missing from the table load as GenericNode and
are passed through by the interpreter until a handler exists for them.
"""

from typing import Dict, Type

from app.models.flow import (
    ABTestNode,
    BaseNode,
    ConditionNode,
    HandoffNode,
    InputNode,
    MessageNode,
    QuickReplyNode,
    StartNode,
)

# Hard ceiling on advancing steps per run when settings do not override it
DEFAULT_MAX_STEPS = 20

NODE_MODELS: Dict[str, Type[BaseNode]] = {
    "start": StartNode,
    "message": MessageNode,
    "condition": ConditionNode,
    "input": InputNode,
    "quick_reply": QuickReplyNode,
    "quickReply": QuickReplyNode,
    "handoff": HandoffNode,
    "ab_test": ABTestNode,
    "abTest": ABTestNode,
}

# Variables the built-in handlers write besides the ones named in node data
LAST_INPUT_VARIABLE = "last_input"
HANDOFF_ASSIGN_VARIABLE = "handoff_assign_to"
HANDOFF_AGENT_VARIABLE = "handoff_agent_id"
HANDOFF_QUEUE_VARIABLE = "handoff_queue"
AB_TEST_VARIABLE_PREFIX = "ab_"

# Branch ports used by the dashboard on branching nodes
CONDITION_TRUE_HANDLE = "true"
CONDITION_FALSE_HANDLE = "false"
AB_VARIANT_HANDLE_PREFIX = "variant-"
