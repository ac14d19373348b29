"""Pure transition logic shared by event handling and the reconciliation tick.

Nothing here touches a store or a notifier: ``decide`` looks at a definition,
a user's state, an event and the current time, and returns the new state
together with the notifications to fire.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from journeyflow.models.journey import (
    Action,
    ActionBlock,
    ActionKind,
    CamelModel,
    Event,
    JourneyDefinition,
    WaitBlock,
)
from journeyflow.models.user_state import UserJourneyState


class OutcomeKind(str, Enum):
    NO_OP = "no_op"
    REJECTED = "rejected"
    ADVANCED = "advanced"
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    REMINDED = "reminded"
    WAITING = "waiting"


# Outcomes that change the stored state.
STATE_CHANGING = {OutcomeKind.ADVANCED, OutcomeKind.MATCHED, OutcomeKind.TIMED_OUT, OutcomeKind.REMINDED}


class Effect(CamelModel):
    kind: ActionKind
    content: Optional[str] = None
    block: str
    reason: Literal["action", "reminder", "crm_policy"]

    @classmethod
    def from_action(cls, action: Action, block: str, reason: str) -> "Effect":
        return cls(kind=action.kind, content=action.content, block=block, reason=reason)


class CrmOnAffirmativeResponse(BaseModel):
    """
    Adds the user to the CRM whenever an event answers "yes", on top of what
    the processed block does itself. Fires at most once per transition and
    never for ticks.
    """

    event_types: Tuple[str, ...] = ("email_response", "response")
    payload_field: str = "response"
    value: Any = "yes"

    def applies(self, event: Event) -> bool:
        return (
            not event.is_tick
            and event.type in self.event_types
            and event.payload.get(self.payload_field) == self.value
        )


class Decision(BaseModel):
    kind: OutcomeKind
    state: UserJourneyState
    effects: List[Effect] = Field(default_factory=list)
    path: List[str] = Field(default_factory=list)
    message: str = ""

    @property
    def changed(self) -> bool:
        return self.kind in STATE_CHANGING


def _advance(state: UserJourneyState, target: Optional[str], now: datetime) -> UserJourneyState:
    return state.model_copy(update={
        "current_block": target,
        "entered_block_at": now,
        "reminders_sent": 0,
        "completed_at": now if target is None else None,
    })


def decide(
    definition: JourneyDefinition,
    state: UserJourneyState,
    event: Event,
    now: datetime,
    crm_policy: Optional[CrmOnAffirmativeResponse] = None,
) -> Decision:
    if state.is_terminal:
        return Decision(kind=OutcomeKind.NO_OP, state=state, message="Journey already complete.")

    block = definition.block(state.current_block)
    if block is None:
        return Decision(
            kind=OutcomeKind.NO_OP,
            state=state,
            message=f"Block {state.current_block} not found in journey {definition.name}.",
        )

    if not event.is_tick and block.accepts and event.type not in block.accepts:
        return Decision(
            kind=OutcomeKind.REJECTED,
            state=state,
            path=[block.name],
            message=f"Event {event.type} is not valid for block {block.name}.",
        )

    effects: List[Effect] = []
    path = [block.name]
    crm_applied = False

    def apply_crm_policy(block_name: str) -> bool:
        if crm_applied or crm_policy is None or not crm_policy.applies(event):
            return crm_applied
        effects.append(Effect(kind=ActionKind.ADD_TO_CRM, block=block_name, reason="crm_policy"))
        return True

    while True:
        if isinstance(block, ActionBlock):
            effects.append(Effect.from_action(block.as_action(), block.name, "action"))
            crm_applied = apply_crm_policy(block.name)
            state = _advance(state, block.next, now)
            kind = OutcomeKind.ADVANCED
            message = f"Action {block.action.value} executed."
            following = definition.block(block.next)
            # The action does not consume the event: a wait it leads into
            # may still be satisfied by it.
            if isinstance(following, WaitBlock) and following.matches(event):
                block = following
                path.append(block.name)
                continue
            break

        elif isinstance(block, WaitBlock):
            if block.matches(event):
                if block.action is not None:
                    effects.append(Effect.from_action(block.action, block.name, "action"))
                crm_applied = apply_crm_policy(block.name)
                state = _advance(state, block.on_match_next, now)
                kind = OutcomeKind.MATCHED
                message = f"Event {event.type} matched block {block.name}."
                break

            elapsed = now - state.entered_block_at
            if elapsed > block.timeout_after:
                state = _advance(state, block.on_timeout_next, now)
                kind = OutcomeKind.TIMED_OUT
                message = f"Timeout reached after {elapsed}."
            elif block.reminder is not None and elapsed > block.reminder_after:
                effects.append(Effect.from_action(block.reminder, block.name, "reminder"))
                state = state.model_copy(update={"reminders_sent": state.reminders_sent + 1})
                kind = OutcomeKind.REMINDED
                message = f"Reminder {state.reminders_sent} sent after {elapsed}."
            else:
                kind = OutcomeKind.WAITING
                message = f"Still waiting for event {block.expected_event_type}."
            break

        else:
            raise TypeError(f"Unsupported block type {type(block).__name__}")

    if state.current_block is not None and state.current_block not in path:
        path.append(state.current_block)
    return Decision(kind=kind, state=state, effects=effects, path=path, message=message)
