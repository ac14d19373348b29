import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import List, Optional, Union

from journeyflow.clock import Clock, utcnow
from journeyflow.errors import (
    ConcurrentUpdateError,
    DuplicateNameError,
    JourneyNotFoundError,
    NotifierError,
    UserNotEnrolledError,
)
from journeyflow.models.journal import JournalEntry
from journeyflow.models.journey import ActionKind, CamelModel, Channel, Event, JourneyDefinition
from journeyflow.models.user_state import UserJourneyState
from journeyflow.services.graph import validate_journey
from journeyflow.services.locks import KeyedLock
from journeyflow.services.notifier import Notifier
from journeyflow.services.transitions import (
    CrmOnAffirmativeResponse,
    Decision,
    Effect,
    OutcomeKind,
    decide,
)
from journeyflow.stores.base import JournalStore, JourneyStore, UserStateStore

logger = logging.getLogger(__name__)

_DEFAULT_CRM_POLICY = CrmOnAffirmativeResponse()

_CHANNELS = {
    ActionKind.EMAIL: Channel.EMAIL,
    ActionKind.MESSAGE: Channel.MESSAGE,
}


class TransitionOutcome(CamelModel):
    user_id: str
    journey_name: str
    event_type: str
    kind: OutcomeKind
    from_block: Optional[str] = None
    to_block: Optional[str] = None
    path: List[str] = []
    effects: List[Effect] = []
    failures: List[str] = []
    message: str = ""


class JourneyEngine:
    """
    Applies events to users' journey states.

    Event handling and the reconciliation tick share ``decide``; this class
    adds per-user serialisation, compare-and-swap persistence, the audit
    journal and notifier delivery around it.
    """

    def __init__(
        self,
        journeys: JourneyStore,
        users: UserStateStore,
        notifier: Notifier,
        journal: Optional[JournalStore] = None,
        clock: Clock = utcnow,
        crm_policy: Optional[CrmOnAffirmativeResponse] = _DEFAULT_CRM_POLICY,
        max_retries: int = 3,
    ):
        self.journeys = journeys
        self.users = users
        self.notifier = notifier
        self.journal = journal
        self.clock = clock
        self.crm_policy = crm_policy
        self.max_retries = max(1, max_retries)
        self.stats = Counter()
        self._locks = KeyedLock()
        self._registration_lock = asyncio.Lock()

    def _log_flow(self, user_id: str, message: str, level: str = "info", **kwargs):
        """Structured logging for journey transitions"""
        log_data = {"user_id": user_id, "message": message, **kwargs}
        getattr(logger, level)(f"[ENGINE] {log_data}")

    async def _add_journal_entry(self, state: UserJourneyState, message: str,
                                 block: Optional[str] = None, details: Optional[dict] = None):
        if self.journal is None:
            return
        try:
            await self.journal.append(JournalEntry(
                user_id=state.user_id,
                journey_name=state.journey_name,
                message=message,
                block=block,
                details=details,
            ))
        except Exception as e:
            logger.error(f"[JOURNAL_ERROR] Failed to add journal entry for user {state.user_id}: {e}", exc_info=True)

    async def _latest(self, journey_name: str) -> JourneyDefinition:
        definition = await self.journeys.get(journey_name)
        if definition is None:
            raise JourneyNotFoundError(journey_name)
        return definition

    async def register_journey(self, definition: Union[JourneyDefinition, dict],
                               replace: bool = False) -> JourneyDefinition:
        if isinstance(definition, dict):
            definition = JourneyDefinition.model_validate(definition)
        validated = validate_journey(definition)
        async with self._registration_lock:
            existing = await self.journeys.get(validated.name)
            if existing is not None and not replace:
                logger.warning(f"[JOURNEY_REGISTER] Journey {validated.name} already registered")
                raise DuplicateNameError(validated.name)
            stored = await self.journeys.install(validated)
        logger.info(f"[JOURNEY_REGISTER] Journey {stored.name} installed as version {stored.version}")
        return stored

    async def enroll(self, user_id: str, journey_name: str,
                     now: Optional[datetime] = None) -> UserJourneyState:
        """Place the user on the first block; an existing enrollment is returned untouched."""
        definition = await self._latest(journey_name)
        async with self._locks.hold(user_id):
            existing = await self.users.get(user_id, journey_name)
            if existing is not None:
                self._log_flow(user_id, "Already enrolled", journey=journey_name, level="debug")
                return existing

            now = now or self.clock()
            state = UserJourneyState(
                user_id=user_id,
                journey_name=journey_name,
                journey_version=definition.version,
                current_block=definition.first_block,
                entered_block_at=now,
                journey_started_at=now,
            )
            if not await self.users.create(state):
                return await self.users.get(user_id, journey_name)

            self.stats["enrollments"] += 1
            self._log_flow(user_id, "Enrolled", journey=journey_name,
                           version=definition.version, block=state.current_block)
            await self._add_journal_entry(state, "User enrolled.", block=state.current_block,
                                          details={"journey_version": definition.version})
            return state

    async def handle_event(self, user_id: str, journey_name: str, event: Union[Event, dict],
                           now: Optional[datetime] = None) -> TransitionOutcome:
        if isinstance(event, dict):
            event = Event.from_body(event)
        await self._latest(journey_name)

        async with self._locks.hold(user_id):
            now = now or self.clock()
            decision, previous = await self._decide_and_store(user_id, journey_name, event, now)

            if decision.kind == OutcomeKind.REJECTED:
                self._log_flow(user_id, decision.message, level="warning", journey=journey_name)
            elif decision.changed:
                self._log_flow(user_id, decision.message, journey=journey_name, kind=decision.kind.value,
                               from_block=previous.current_block, to_block=decision.state.current_block)
                await self._add_journal_entry(
                    decision.state,
                    decision.message,
                    block=previous.current_block,
                    details={
                        "event_type": event.type,
                        "outcome": decision.kind.value,
                        "to_block": decision.state.current_block,
                    },
                )
                if decision.state.is_terminal:
                    self._log_flow(user_id, "Journey completed", journey=journey_name)
            else:
                self._log_flow(user_id, decision.message, level="debug", journey=journey_name)
            self.stats[decision.kind.value] += 1

            failures = await self._deliver(user_id, decision.effects)

        return TransitionOutcome(
            user_id=user_id,
            journey_name=journey_name,
            event_type=event.type,
            kind=decision.kind,
            from_block=previous.current_block,
            to_block=decision.state.current_block,
            path=decision.path,
            effects=decision.effects,
            failures=failures,
            message=decision.message,
        )

    async def handle_tick(self, user_id: str, journey_name: str,
                          now: Optional[datetime] = None) -> TransitionOutcome:
        return await self.handle_event(user_id, journey_name, Event.tick(), now=now)

    async def _decide_and_store(self, user_id: str, journey_name: str, event: Event, now: datetime):
        for attempt in range(self.max_retries):
            state = await self.users.get(user_id, journey_name)
            if state is None:
                raise UserNotEnrolledError(user_id, journey_name)
            definition = await self.journeys.get(journey_name, state.journey_version)
            if definition is None:
                raise JourneyNotFoundError(f"{journey_name} (version {state.journey_version})")

            decision: Decision = decide(definition, state, event, now, self.crm_policy)
            if not decision.changed:
                return decision, state

            stored = decision.state.model_copy(update={"revision": state.revision + 1})
            try:
                await self.users.save(stored, expected_revision=state.revision)
            except ConcurrentUpdateError:
                self.stats["write_conflicts"] += 1
                self._log_flow(user_id, f"Concurrent update, retry {attempt + 1}/{self.max_retries}",
                               level="warning", journey=journey_name)
                continue
            return decision.model_copy(update={"state": stored}), state

        raise ConcurrentUpdateError(
            f"Gave up updating user {user_id} in {journey_name} after {self.max_retries} attempts"
        )

    async def _deliver(self, user_id: str, effects: List[Effect]) -> List[str]:
        """Fire effects in order. Failures are reported, never raised."""
        failures = []
        for effect in effects:
            try:
                if effect.kind == ActionKind.ADD_TO_CRM:
                    await self.notifier.add_to_crm(user_id)
                elif effect.kind in _CHANNELS:
                    await self.notifier.send(user_id, _CHANNELS[effect.kind], effect.content)
                else:
                    raise TypeError(f"Unsupported action kind {effect.kind}")
                self.stats["deliveries"] += 1
            except NotifierError as e:
                self.stats["delivery_failures"] += 1
                self._log_flow(user_id, f"Delivery failed: {e}", level="error",
                               block=effect.block, action=effect.kind.value)
                failures.append(f"{effect.kind.value}: {e}")
            except Exception as e:
                self.stats["delivery_failures"] += 1
                logger.error(f"[NOTIFY] Unexpected notifier failure for user {user_id}: {e}", exc_info=True)
                failures.append(f"{effect.kind.value}: {e}")
        return failures

    async def get_state(self, user_id: str, journey_name: str) -> UserJourneyState:
        state = await self.users.get(user_id, journey_name)
        if state is None:
            raise UserNotEnrolledError(user_id, journey_name)
        return state

    async def list_states(self, user_id: Optional[str] = None) -> List[UserJourneyState]:
        return await self.users.list_all(user_id)

    async def get_journey(self, name: str) -> JourneyDefinition:
        return await self._latest(name)

    async def list_journeys(self) -> List[JourneyDefinition]:
        return await self.journeys.list_latest()

    async def journal_for(self, user_id: str, journey_name: Optional[str] = None) -> List[JournalEntry]:
        if self.journal is None:
            return []
        return await self.journal.list(user_id, journey_name)
