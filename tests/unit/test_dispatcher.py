"""Tests for event dispatch."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.gitlab.events import JobEvent, PipelineEvent, PushEvent
from src.models import PipelineUpdate
from src.notify.coalescer import CoalescingOutcome, PipelineCoalescer
from src.notify.delivery import DeliveryDriver
from src.notify.dispatcher import EventDispatcher
from tests.conftest import make_job_payload, make_pipeline_payload, make_push_payload


@pytest.fixture
def delivery() -> MagicMock:
    return MagicMock(spec=DeliveryDriver)


@pytest.fixture
def coalescer() -> MagicMock:
    mock = MagicMock(spec=PipelineCoalescer)
    mock.handle.return_value = CoalescingOutcome.SENT_NEW
    return mock


@pytest.mark.asyncio
async def test_plain_event_is_sent(delivery: MagicMock, coalescer: MagicMock) -> None:
    dispatcher = EventDispatcher(delivery, coalescer)
    await dispatcher.dispatch(3, PushEvent.model_validate(make_push_payload()))
    delivery.send.assert_awaited_once()
    recipient, text, link = delivery.send.await_args.args
    assert recipient == 3
    assert text.startswith("🛠 Jane Doe pushed to relay#feature/login")
    assert link.label == "Changes"
    coalescer.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_pipeline_event_goes_to_coalescer(
    delivery: MagicMock, coalescer: MagicMock,
) -> None:
    dispatcher = EventDispatcher(delivery, coalescer)
    await dispatcher.dispatch(3, PipelineEvent.model_validate(make_pipeline_payload()))
    coalescer.handle.assert_awaited_once()
    recipient, update = coalescer.handle.await_args.args
    assert recipient == 3
    assert isinstance(update, PipelineUpdate)
    delivery.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_created_job_is_dropped(delivery: MagicMock, coalescer: MagicMock) -> None:
    dispatcher = EventDispatcher(delivery, coalescer)
    await dispatcher.dispatch(3, JobEvent.model_validate(make_job_payload(status="created")))
    delivery.send.assert_not_awaited()
    coalescer.handle.assert_not_awaited()
