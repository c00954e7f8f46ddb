"""Folds CI job and pipeline updates into one chat message per pipeline.

Per recipient the store keeps the id of the pipeline being tracked and the
chat message that represents it. An update for a different pipeline starts a
new message; an update for the tracked pipeline is appended to its message.
A failed pipeline always gets its own message with a link so it cannot be
lost in the middle of an edited one.
"""

from __future__ import annotations

import logging
from enum import Enum

from src.errors import EditError
from src.gitlab.events import CIStatus
from src.models import CoalescingState, PipelineTracking, PipelineUpdate, UpdateSource
from src.notify.delivery import NO_MESSAGE_ID, DeliveryDriver
from src.storage import KEY_PIPELINE_LAST_ID, KEY_PIPELINE_MESSAGE_ID, StateStore, StoreView

logger = logging.getLogger(__name__)


class CoalescingOutcome(str, Enum):
    SENT_NEW = "sent_new"
    APPENDED = "appended"
    SENT_FAILURE = "sent_failure"
    DROPPED = "dropped"


async def read_tracking(view: StoreView, recipient_id: int) -> PipelineTracking:
    return PipelineTracking(
        last_pipeline_id=await view.get(recipient_id, KEY_PIPELINE_LAST_ID),
        last_message_id=await view.get(recipient_id, KEY_PIPELINE_MESSAGE_ID),
    )


class PipelineCoalescer:
    """Decides between editing the active pipeline message and sending a new one."""

    def __init__(self, store: StateStore, delivery: DeliveryDriver) -> None:
        self._store = store
        self._delivery = delivery

    async def handle(self, recipient_id: int, update: PipelineUpdate) -> CoalescingOutcome:
        pipeline_id = str(update.pipeline_id)
        text = update.notification.text

        async with self._store.transaction() as tx:
            tracking = await read_tracking(tx, recipient_id)
            if tracking.last_pipeline_id != pipeline_id:
                # Claim the pipeline before sending so concurrent updates see it as tracked.
                await tx.set(recipient_id, KEY_PIPELINE_LAST_ID, pipeline_id)
                await tx.set(recipient_id, KEY_PIPELINE_MESSAGE_ID, "")
                tracking = PipelineTracking(last_pipeline_id=pipeline_id)
                is_new_pipeline = True
            else:
                is_new_pipeline = False

        if is_new_pipeline:
            logger.debug("Pipeline %s is new for recipient %d", pipeline_id, recipient_id)
            return await self._send_and_track(recipient_id, pipeline_id, text)

        if update.source == UpdateSource.PIPELINE and update.status == CIStatus.FAILED.value:
            message_id = await self._delivery.send(recipient_id, text, update.notification.link)
            if message_id == NO_MESSAGE_ID:
                return CoalescingOutcome.DROPPED
            return CoalescingOutcome.SENT_FAILURE

        if tracking.state == CoalescingState.HAS_ACTIVE_MESSAGE:
            try:
                await self._delivery.edit(recipient_id, tracking.message_id, text)
                logger.debug(
                    "Appended to message %d of pipeline %s", tracking.message_id, pipeline_id,
                )
                return CoalescingOutcome.APPENDED
            except EditError as exc:
                logger.debug("Edit failed, sending a new message instead: %s", exc)

        return await self._send_and_track(recipient_id, pipeline_id, text)

    async def _send_and_track(
        self, recipient_id: int, pipeline_id: str, text: str,
    ) -> CoalescingOutcome:
        message_id = await self._delivery.send(recipient_id, text)
        if message_id == NO_MESSAGE_ID:
            return CoalescingOutcome.DROPPED

        async with self._store.transaction() as tx:
            # A newer pipeline may have claimed the slot while we were sending.
            if await tx.get(recipient_id, KEY_PIPELINE_LAST_ID) == pipeline_id:
                await tx.set(recipient_id, KEY_PIPELINE_MESSAGE_ID, str(message_id))
        return CoalescingOutcome.SENT_NEW
