# /app/utils/dependencies.py

import hmac
import hashlib
import secrets
import structlog
from fastapi import Request, HTTPException

from app.config.settings import settings
from app.utils.metrics import webhook_signature_counter
from app.utils.request_utils import get_remote_address

log = structlog.get_logger(__name__)


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Check a Meta `sha256=<hex>` HMAC signature of a webhook body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected_signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected_signature, signature[7:])


async def verify_webhook_signature(request: Request) -> bytes:
    body = await request.body()
    signature = request.headers.get("x-hub-signature-256", "")
    if not verify_signature(body, signature, settings.whatsapp_app_secret):
        webhook_signature_counter.labels(status="invalid").inc()
        log.error("Invalid webhook signature.", client_ip=get_remote_address(request), signature=signature[:50])
        raise HTTPException(status_code=403, detail="Invalid signature")
    webhook_signature_counter.labels(status="valid").inc()
    return body


async def verify_api_key(request: Request):
    """Require the X-API-KEY header when an API key is configured."""
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
