# /app/services/bot_service.py

import logging
import uuid
from typing import List, Optional

from app.config.settings import settings
from app.models.flow import RunRequest, RunResult, SessionState
from app.services.channel_service import channel_service
from app.services.db_service import DatabaseService, db_service
from app.utils.metrics import inbound_messages_counter
from app.utils.session_lock import SessionLockManager, session_locks
from app.workflows.definitions import HANDOFF_ASSIGN_VARIABLE
from app.workflows.effects import EffectRunner
from app.workflows.engine import FlowInterpreter
from app.workflows.interfaces import ChannelSender
from app.workflows.registry import NodeHandlerRegistry, build_default_registry

# This service is the entry point for running bots. It serializes walks of
# one session, and turns inbound customer messages into session starts or
# resumptions.

logger = logging.getLogger(__name__)


def matches_trigger(text: str, keywords: Optional[List[str]]) -> bool:
    """A bot with no trigger keywords answers any message."""
    if not keywords:
        return True
    lowered = (text or "").lower()
    return any(keyword.lower() in lowered for keyword in keywords if keyword)


class BotService:
    def __init__(
        self,
        store: DatabaseService,
        channel_sender: ChannelSender,
        locks: SessionLockManager,
        registry: Optional[NodeHandlerRegistry] = None,
        max_steps: int = 20,
    ):
        self.store = store
        self.locks = locks
        self.interpreter = FlowInterpreter(
            flow_store=store,
            session_store=store,
            message_sink=store,
            registry=registry or build_default_registry(),
            effect_runner=EffectRunner(channel_sender),
            max_steps=max_steps,
        )

    async def run_bot(self, request: RunRequest) -> RunResult:
        """Walk one session's flow while holding that session's lock."""
        async with self.locks.hold(request.session_id):
            return await self.interpreter.run(request)

    async def drop_session(self, session_id: str) -> bool:
        """Abandon an open session. Returns False if it was not open."""
        async with self.locks.hold(session_id):
            dropped = await self.store.drop_session(session_id)
        logger.info(f"Drop session {session_id}: {'dropped' if dropped else 'not open'}")
        return dropped

    async def handle_inbound_message(
        self,
        platform: str,
        sender: str,
        text: str,
        phone_number_id: Optional[str] = None,
        contact_name: Optional[str] = None,
    ) -> Optional[RunResult]:
        """
        Record a customer's message and let the active bot answer it.

        A running session of the bot in this conversation is resumed with the
        message as input; otherwise a new session starts when the message
        matches the bot's trigger keywords. Conversations assigned to a human
        agent are only recorded.

        Returns:
            The run result, or None when no bot walked
        """
        conversation = await self.store.get_or_create_conversation(platform, sender, contact_name)
        conversation_id = conversation["_id"]
        await self.store.record(conversation_id, text, "inbound", {"source": "contact", "platform": platform})

        if conversation.get("assigned_agent_id"):
            inbound_messages_counter.labels(platform=platform, outcome="agent_assigned").inc()
            logger.info(f"Conversation {conversation_id} is assigned to an agent, bot stays silent")
            return None

        bot = await self.store.get_active_bot(phone_number_id)
        if not bot:
            inbound_messages_counter.labels(platform=platform, outcome="no_bot").inc()
            logger.info(f"No active bot for phone number {phone_number_id}, message only recorded")
            return None
        bot_id = bot["_id"]

        # Lookup, creation and the walk share one lock so back-to-back
        # messages resume from the position the previous walk saved.
        async with self.locks.hold(f"conversation:{bot_id}:{conversation_id}"):
            return await self._answer(bot, conversation, platform, sender, text)

    async def _answer(self, bot: dict, conversation: dict, platform: str, sender: str, text: str) -> Optional[RunResult]:
        bot_id = bot["_id"]
        conversation_id = conversation["_id"]

        session = await self.store.find_open_session(bot_id, conversation_id)
        if session is not None and HANDOFF_ASSIGN_VARIABLE in session.variables:
            inbound_messages_counter.labels(platform=platform, outcome="handed_off").inc()
            logger.info(f"Session {session.session_id} is with a human agent, bot stays silent")
            return None

        if session is None:
            if not matches_trigger(text, bot.get("trigger_keywords")):
                inbound_messages_counter.labels(platform=platform, outcome="no_trigger").inc()
                return None
            session = SessionState(
                session_id=uuid.uuid4().hex,
                bot_id=bot_id,
                contact_id=conversation.get("contact_id") or sender,
                conversation_id=conversation_id,
                platform=platform,
                recipient=sender,
            )
            await self.store.save_session(session.session_id, session)
            logger.info(f"Started session {session.session_id} of bot {bot_id} for conversation {conversation_id}")
            outcome = "started"
        else:
            outcome = "resumed"

        inbound_messages_counter.labels(platform=platform, outcome=outcome).inc()
        return await self.run_bot(
            RunRequest(
                bot_id=bot_id,
                session_id=session.session_id,
                contact_id=session.contact_id,
                current_node_id=session.current_node_id,
                input_text=text,
            )
        )


# Globally accessible instance
bot_service = BotService(db_service, channel_service, session_locks, max_steps=settings.bot_max_steps)
