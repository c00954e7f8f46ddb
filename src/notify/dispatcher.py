"""Routes one decoded webhook event to the chat."""

from __future__ import annotations

import logging

from src.gitlab.events import GitLabEvent
from src.models import PipelineUpdate
from src.notify.coalescer import PipelineCoalescer
from src.notify.delivery import DeliveryDriver
from src.notify.formatter import format_event

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Formats an event and hands it to the delivery driver or the coalescer."""

    def __init__(self, delivery: DeliveryDriver, coalescer: PipelineCoalescer) -> None:
        self._delivery = delivery
        self._coalescer = coalescer

    async def dispatch(self, recipient_id: int, event: GitLabEvent) -> None:
        formatted = format_event(event, recipient_id)
        if formatted is None:
            return

        if isinstance(formatted, PipelineUpdate):
            outcome = await self._coalescer.handle(recipient_id, formatted)
            logger.debug(
                "Pipeline %d update for %d: %s", formatted.pipeline_id, recipient_id, outcome.value,
            )
            return

        await self._delivery.send(recipient_id, formatted.text, formatted.link)
