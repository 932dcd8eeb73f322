# /app/routes/webhooks.py

import json
import structlog
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Query
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config.settings import settings
from app.services.bot_service import bot_service
from app.utils.dependencies import verify_webhook_signature
from app.utils.metrics import response_time_histogram, inbound_messages_counter
from app.utils.rate_limiter import limiter

# Inbound WhatsApp events. Signature verification happens in a dependency;
# each customer message is handed to the bot service as a background task so
# Meta gets its 200 right away.

router = APIRouter(
    tags=["Webhooks"]
)

log = structlog.get_logger(__name__)


def extract_message_text(message: dict) -> Optional[str]:
    """The text a contact sent, or the id of the reply button they pressed."""
    message_type = message.get("type")
    if message_type == "text":
        return (message.get("text") or {}).get("body")
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("id") or reply.get("title")
    if message_type == "button":
        button = message.get("button") or {}
        return button.get("payload") or button.get("text")
    return None


async def _run_inbound(platform: str, sender: str, text: str, phone_number_id: Optional[str], contact_name: Optional[str]):
    try:
        await bot_service.handle_inbound_message(platform, sender, text, phone_number_id, contact_name)
    except Exception:
        inbound_messages_counter.labels(platform=platform, outcome="error").inc()
        log.exception("Inbound message processing failed", sender=sender[:4], phone_number_id=phone_number_id)


# --- WhatsApp Webhooks ---

@router.get("/whatsapp")
async def verify_whatsapp_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge")
):
    """WhatsApp webhook verification (GET request)."""
    if hub_mode == "subscribe" and hub_verify_token == settings.whatsapp_verify_token:
        log.info("WhatsApp webhook verification successful.")
        return PlainTextResponse(hub_challenge)
    log.error("WhatsApp webhook verification failed.")
    raise HTTPException(status_code=403, detail="Forbidden")

@router.post("/whatsapp")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    verified_body: bytes = Depends(verify_webhook_signature)
):
    """Receives message events and status updates from the WhatsApp Cloud API."""
    with response_time_histogram.labels(endpoint="whatsapp_webhook").time():
        try:
            data = json.loads(verified_body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        dispatched = 0
        for entry in data.get("entry", []):
            for change in entry.get("changes", []):
                if change.get("field") != "messages":
                    log.debug("Ignoring non-message change", field=change.get("field"))
                    continue

                value = change.get("value", {})
                incoming_phone_id = value.get("metadata", {}).get("phone_number_id")
                expected_phone_id = settings.whatsapp_phone_id
                if incoming_phone_id and expected_phone_id and incoming_phone_id != expected_phone_id:
                    log.info("Ignored event for different phone ID.", incoming_id=incoming_phone_id, expected_id=expected_phone_id)
                    continue

                for status_data in value.get("statuses", []):
                    log.info("Delivery status update", wamid=status_data.get("id"), status=status_data.get("status"))

                contacts = value.get("contacts") or [{}]
                contact_name = (contacts[0].get("profile") or {}).get("name")

                for message in value.get("messages", []):
                    sender = message.get("from")
                    text = extract_message_text(message)
                    if not sender or text is None:
                        inbound_messages_counter.labels(platform="whatsapp", outcome="unsupported").inc()
                        log.info("Skipping unsupported message", message_type=message.get("type"))
                        continue
                    background_tasks.add_task(_run_inbound, "whatsapp", sender, text, incoming_phone_id, contact_name)
                    dispatched += 1

        log.info("Webhook processing complete.", dispatched=dispatched)
        return JSONResponse({"status": "success"})
