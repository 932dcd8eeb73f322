# /app/services/db_service.py

import logging
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from app.config.settings import settings
from app.models.flow import SessionState, SessionStatus
from app.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

OPEN_SESSION_STATUSES = [SessionStatus.ACTIVE.value, SessionStatus.WAITING_FOR_INPUT.value]


class DatabaseService:
    """
    MongoDB persistence for the bot runner. One instance serves as the
    Flow Store (`bots`), the Session Store (`bot_sessions`) and the
    Message Sink (`messages`).

    Unlike dashboard reads, the runner's writes must not be silently
    swallowed: store errors propagate so the interpreter can report them.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client.get_default_database()
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    # ==================== Helper Methods ====================

    def _id_filter(self, value: str) -> Dict[str, Any]:
        """
        Match a document whose `_id` is either the given string or the
        ObjectId it spells, since bots created by the dashboard use both.
        """
        if ObjectId.is_valid(value):
            return {"_id": {"$in": [value, ObjectId(value)]}}
        return {"_id": value}

    def _serialize_id(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if document and "_id" in document:
            document["_id"] = str(document["_id"])
        return document

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _tracked(self, operation_name: str, operation):
        """Run a database call, counting its outcome. Errors are re-raised."""
        try:
            result = await operation()
        except Exception:
            database_operations_counter.labels(operation=operation_name, status="failed").inc()
            logger.exception(f"Database operation {operation_name} failed")
            raise
        database_operations_counter.labels(operation=operation_name, status="success").inc()
        return result

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            ("bots", [("is_active", 1), ("phone_number_id", 1)], {}),
            ("bot_sessions", [("bot_id", 1), ("conversation_id", 1), ("status", 1)], {}),
            ("bot_sessions", [("updated_at", -1)], {}),
            ("conversations", [("platform", 1), ("contact_address", 1)], {"unique": True}),
            ("messages", [("conversation_id", 1), ("created_at", 1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False

    # ==================== Flow Store ====================

    async def get_flow(self, bot_id: str) -> Optional[Dict[str, Any]]:
        """
        Return the stored flow graph of a bot.

        Returns:
            The bot's `flow_data` document, or None when the bot does not
            exist or has no flow yet
        """
        bot = await self._tracked(
            "get_flow",
            lambda: self.db.bots.find_one(self._id_filter(bot_id), {"flow_data": 1}),
        )
        if not bot:
            return None
        return bot.get("flow_data")

    async def get_active_bot(self, phone_number_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find the active bot answering on a business phone number."""
        query: Dict[str, Any] = {"is_active": True}
        if phone_number_id:
            query["phone_number_id"] = phone_number_id
        bot = await self._tracked(
            "get_active_bot",
            lambda: self.db.bots.find_one(query, {"flow_data": 0}),
        )
        return self._serialize_id(bot)

    # ==================== Session Store ====================

    def _to_session(self, document: Dict[str, Any]) -> SessionState:
        document = dict(document)
        document["session_id"] = str(document.pop("_id"))
        return SessionState.model_validate(document)

    async def load_session(self, session_id: str) -> Optional[SessionState]:
        document = await self._tracked(
            "load_session",
            lambda: self.db.bot_sessions.find_one({"_id": session_id}),
        )
        return self._to_session(document) if document else None

    async def save_session(self, session_id: str, state: SessionState) -> None:
        document = state.model_dump(exclude={"session_id"})
        document["status"] = state.status.value
        document["_id"] = session_id
        await self._tracked(
            "save_session",
            lambda: self.db.bot_sessions.replace_one({"_id": session_id}, document, upsert=True),
        )

    async def find_open_session(self, bot_id: str, conversation_id: str) -> Optional[SessionState]:
        """The session of this bot still running in a conversation, if any."""
        document = await self._tracked(
            "find_open_session",
            lambda: self.db.bot_sessions.find_one(
                {
                    "bot_id": bot_id,
                    "conversation_id": conversation_id,
                    "status": {"$in": OPEN_SESSION_STATUSES},
                },
                sort=[("updated_at", -1)],
            ),
        )
        return self._to_session(document) if document else None

    async def drop_session(self, session_id: str) -> bool:
        result = await self._tracked(
            "drop_session",
            lambda: self.db.bot_sessions.update_one(
                {"_id": session_id, "status": {"$in": OPEN_SESSION_STATUSES}},
                {"$set": {"status": SessionStatus.DROPPED.value, "updated_at": self._now_utc()}},
            ),
        )
        return result.modified_count > 0

    # ==================== Message Sink ====================

    async def record(
        self,
        conversation_id: str,
        content: str,
        direction: str,
        metadata: Dict[str, Any],
    ) -> str:
        """Store one conversation message and return its id."""
        now = self._now_utc()
        message = {
            "conversation_id": conversation_id,
            "content": content,
            "direction": direction,
            "message_type": "text",
            "source": metadata.get("source", "bot" if direction == "outbound" else "contact"),
            "metadata": metadata,
            "created_at": now,
        }
        result = await self._tracked("record_message", lambda: self.db.messages.insert_one(message))
        await self._tracked(
            "touch_conversation",
            lambda: self.db.conversations.update_one(
                self._id_filter(conversation_id), {"$set": {"last_message_at": now}}
            ),
        )
        return str(result.inserted_id)

    # ==================== Conversations ====================

    async def get_or_create_conversation(self, platform: str, contact_address: str, contact_name: Optional[str] = None) -> Dict[str, Any]:
        """Find the conversation with a contact on a platform, creating it on first contact."""
        now = self._now_utc()
        conversation = await self._tracked(
            "get_or_create_conversation",
            lambda: self.db.conversations.find_one_and_update(
                {"platform": platform, "contact_address": contact_address},
                {
                    "$setOnInsert": {
                        "platform": platform,
                        "contact_address": contact_address,
                        "contact_name": contact_name or f"{platform} user",
                        "status": "active",
                        "assigned_agent_id": None,
                        "created_at": now,
                    },
                    "$set": {"last_message_at": now},
                },
                upsert=True,
                return_document=True,
            ),
        )
        return self._serialize_id(conversation)


# Globally accessible instance
db_service = DatabaseService(settings.mongo_atlas_uri)
