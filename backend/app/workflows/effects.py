# /app/workflows/effects.py

import logging
from typing import Iterable, List

from app.models.flow import EffectFailure, OutboundSend
from app.utils.metrics import outbound_sends_counter
from app.workflows.interfaces import ChannelSender

# Executes the side effects node handlers return. A failed delivery never
# aborts the walk that produced it: it is logged, counted and reported back
# to the caller with the run result.

logger = logging.getLogger(__name__)


class EffectRunner:
    def __init__(self, channel_sender: ChannelSender):
        self.channel_sender = channel_sender

    async def run(self, effects: Iterable[OutboundSend]) -> List[EffectFailure]:
        """Deliver effects in the order the walk produced them."""
        failures: List[EffectFailure] = []
        for effect in effects:
            try:
                provider_id = await self.channel_sender.send(
                    effect.platform,
                    effect.recipient,
                    effect.text,
                    buttons=effect.buttons or None,
                )
            except Exception as e:
                logger.error(
                    f"Outbound send to {effect.platform}:{effect.recipient[:4]}... failed: {e}",
                    exc_info=True,
                )
                outbound_sends_counter.labels(platform=effect.platform, status="error").inc()
                failures.append(EffectFailure(effect=effect, error=str(e)))
                continue

            outbound_sends_counter.labels(platform=effect.platform, status="sent").inc()
            logger.info(f"Outbound message delivered on {effect.platform}, provider id: {provider_id}")
        return failures
