"""
Pytest configuration and fixtures for the journeyflow tests.

This module provides:
- A controllable clock
- A notifier that records every delivery
- A fresh in-memory runtime per test
- The sample journey used across the suite
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from journeyflow.errors import CrmError, DeliveryError
from journeyflow.services.notifier import LoggingNotifier
from journeyflow.services.runtime import JourneyRuntime
from journeyflow.stores.memory import (
    InMemoryCrmStore,
    InMemoryJournalStore,
    InMemoryJourneyStore,
    InMemoryUserStateStore,
)

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier(LoggingNotifier):
    """Keeps every send and CRM call; can be told to fail or to be slow."""

    def __init__(self, crm_store, fail_sends=False, fail_crm=False, delay=0.0):
        super().__init__(crm_store)
        self.sent = []
        self.crm_calls = []
        self.fail_sends = fail_sends
        self.fail_crm = fail_crm
        self.delay = delay

    async def send(self, user_id, channel, content):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_sends:
            raise DeliveryError(f"{channel.value} gateway down")
        self.sent.append((user_id, channel, content))

    async def add_to_crm(self, user_id):
        self.crm_calls.append(user_id)
        if self.fail_crm:
            raise CrmError("CRM unavailable")
        await super().add_to_crm(user_id)


def make_runtime(clock=None, notifier_factory=RecordingNotifier, users=None, **kwargs):
    crm = InMemoryCrmStore()
    return JourneyRuntime(
        InMemoryJourneyStore(),
        users or InMemoryUserStateStore(),
        crm,
        journal=InMemoryJournalStore(),
        notifier=notifier_factory(crm),
        clock=clock or FakeClock(),
        interval=0.01,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runtime(clock):
    """A fresh in-memory runtime; nothing is shared between tests."""
    return make_runtime(clock)


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def notifier(runtime):
    return runtime.notifier


@pytest.fixture
def sample_journey():
    """Send email, wait a day for a "yes", otherwise message the user, then record them in the CRM."""
    return {
        "name": "Sample_Journey",
        "blocks": [
            {
                "name": "Send Email",
                "type": "action",
                "action": "email",
                "emailContent": "Hello, this is a sample email content.",
                "next": 1,
            },
            {
                "name": "Wait for Email Response",
                "type": "wait",
                "events": ["email_response"],
                "event": "email_response",
                "criteria": {"response": "yes"},
                "next": 3,
                "nextOnTimeout": 2,
                "timeout": 86400,
            },
            {
                "name": "Send WhatsApp Message",
                "type": "action",
                "action": "whatsapp",
                "whatsappContent": "Hello, this is a sample WhatsApp message.",
                "next": "Add to CRM",
            },
            {
                "name": "Add to CRM",
                "type": "action",
                "action": "add_to_crm",
            },
        ],
    }


@pytest.fixture
def reminder_journey():
    """A journey that starts by waiting, with a message reminder after five minutes."""
    return {
        "name": "Reminder_Journey",
        "blocks": [
            {
                "name": "Wait for Reply",
                "type": "wait",
                "expectedEventType": "reply",
                "reminder": {"kind": "message", "content": "Still there?"},
                "reminderAfter": 300,
                "timeoutAfter": 86400,
                "onMatchNext": "Thank You",
                "onTimeoutNext": "Give Up",
            },
            {
                "name": "Thank You",
                "type": "action",
                "action": "email",
                "content": "Thanks for replying!",
            },
            {
                "name": "Give Up",
                "type": "action",
                "action": "message",
                "content": "We will stop bothering you.",
            },
        ],
    }
