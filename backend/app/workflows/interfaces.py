# /app/workflows/interfaces.py

"""
Interfaces of the collaborators the flow interpreter talks to.
"""

from typing import Any, Dict, Optional, Protocol

from app.models.flow import QuickReplyButton, SessionState


class FlowStore(Protocol):
    """Read-only access to the stored flow of each bot."""

    async def get_flow(self, bot_id: str) -> Optional[Dict[str, Any]]:
        """Return `{"nodes": [...], "edges": [...]}` or None when the bot has no flow."""
        ...


class SessionStore(Protocol):
    """Owns persistence of execution sessions."""

    async def load_session(self, session_id: str) -> Optional[SessionState]:
        ...

    async def save_session(self, session_id: str, state: SessionState) -> None:
        ...


class MessageSink(Protocol):
    """Durably records a message of a conversation."""

    async def record(
        self,
        conversation_id: str,
        content: str,
        direction: str,
        metadata: Dict[str, Any],
    ) -> str:
        ...


class ChannelSender(Protocol):
    """Outbound transport to an external messaging network."""

    async def send(
        self,
        platform: str,
        recipient: str,
        message: str,
        buttons: Optional[list[QuickReplyButton]] = None,
    ) -> Optional[str]:
        ...
