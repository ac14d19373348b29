"""Tests for the pure transition function."""

from datetime import timedelta

import pytest

from journeyflow.models.journey import ActionKind, Event, JourneyDefinition
from journeyflow.models.user_state import UserJourneyState
from journeyflow.services.graph import validate_journey
from journeyflow.services.locks import KeyedLock
from journeyflow.services.transitions import CrmOnAffirmativeResponse, OutcomeKind, decide
from conftest import START

YES = Event(type="email_response", payload={"response": "yes"})


@pytest.fixture
def definition(sample_journey):
    return validate_journey(JourneyDefinition.model_validate(sample_journey)).model_copy(update={"version": 1})


def _state(block, **kwargs):
    return UserJourneyState(
        user_id="123",
        journey_name="Sample_Journey",
        journey_version=1,
        current_block=block,
        entered_block_at=START,
        journey_started_at=START,
        **kwargs,
    )


class TestDecide:
    """Tests for decide."""

    def test_crm_policy_fires_once_per_transition(self, definition):
        decision = decide(definition, _state("Send Email"), YES, START, CrmOnAffirmativeResponse())

        crm_effects = [effect for effect in decision.effects if effect.kind == ActionKind.ADD_TO_CRM]
        assert len(crm_effects) == 1
        assert decision.kind == OutcomeKind.MATCHED

    def test_crm_policy_ignores_ticks(self):
        policy = CrmOnAffirmativeResponse()

        assert policy.applies(YES)
        assert policy.applies(Event(type="response", payload={"response": "yes"}))
        assert not policy.applies(Event(type="email_response", payload={"response": "no"}))
        assert not policy.applies(Event.tick())

    def test_decide_does_not_mutate_input(self, definition):
        state = _state("Send Email")

        decision = decide(definition, state, Event.tick(), START + timedelta(minutes=1))

        assert state.current_block == "Send Email"
        assert decision.state.current_block == "Wait for Email Response"
        assert decision.state.entered_block_at == START + timedelta(minutes=1)

    def test_unknown_block_is_no_op(self, definition):
        decision = decide(definition, _state("Removed Block"), YES, START)

        assert decision.kind == OutcomeKind.NO_OP
        assert not decision.changed

    def test_completion_sets_completed_at(self, definition):
        now = START + timedelta(hours=1)

        decision = decide(definition, _state("Add to CRM"), Event.tick(), now)

        assert decision.state.is_terminal
        assert decision.state.completed_at == now
        assert [effect.kind for effect in decision.effects] == [ActionKind.ADD_TO_CRM]

    def test_reminder_requires_configuration(self, definition):
        decision = decide(definition, _state("Wait for Email Response"), Event.tick(), START + timedelta(hours=1))

        assert decision.kind == OutcomeKind.WAITING
        assert decision.effects == []


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_locks_are_dropped_when_released(self):
        locks = KeyedLock()

        async with locks.hold("123"):
            assert locks.is_locked("123")
            assert not locks.is_locked("456")
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("123")
