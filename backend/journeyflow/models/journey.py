from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from journeyflow.errors import InvalidEventError

DEFAULT_TIMEOUT = timedelta(hours=24)
DEFAULT_REMINDER_AFTER = timedelta(minutes=5)

TICK_EVENT_TYPE = "tick"

# A block is addressed by name; an integer index is accepted on input and
# resolved to the name when the journey is registered.
BlockRef = Optional[Union[int, str]]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ActionKind(str, Enum):
    EMAIL = "email"
    MESSAGE = "message"
    ADD_TO_CRM = "add_to_crm"


class Channel(str, Enum):
    EMAIL = "email"
    MESSAGE = "message"


def _coerce_action_kind(value):
    if isinstance(value, str) and value.strip().lower() == "whatsapp":
        return ActionKind.MESSAGE.value
    return value


ActionKindField = Annotated[ActionKind, BeforeValidator(_coerce_action_kind)]


class Action(CamelModel):
    kind: ActionKindField
    content: Optional[str] = None


class ActionBlock(CamelModel):
    type: Literal["action"] = "action"
    name: str = Field(..., min_length=1, examples=["Send Email"])
    action: ActionKindField
    content: Optional[str] = None
    next: BlockRef = None
    accepts: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_content(cls, data):
        # Older payloads carried the body under a channel specific key.
        if isinstance(data, dict) and data.get("content") is None:
            for key in ("emailContent", "whatsappContent", "messageContent"):
                if data.get(key):
                    data = {**data, "content": data[key]}
                    break
        if isinstance(data, dict) and "events" in data and "accepts" not in data:
            data = {**data, "accepts": data["events"]}
        return data

    def as_action(self) -> Action:
        return Action(kind=self.action, content=self.content)


class WaitBlock(CamelModel):
    type: Literal["wait"] = "wait"
    name: str = Field(..., min_length=1, examples=["Wait for Email Response"])
    expected_event_type: str
    match_criteria: Dict[str, Any] = Field(default_factory=dict)
    action: Optional[Action] = None
    reminder: Optional[Action] = None
    reminder_after: timedelta = DEFAULT_REMINDER_AFTER
    timeout_after: timedelta = DEFAULT_TIMEOUT
    on_match_next: BlockRef = None
    on_timeout_next: BlockRef = None
    accepts: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data):
        if not isinstance(data, dict):
            return data
        renames = {
            "event": "expectedEventType",
            "criteria": "matchCriteria",
            "next": "onMatchNext",
            "nextOnTimeout": "onTimeoutNext",
            "timeout": "timeoutAfter",
            "events": "accepts",
        }
        data = dict(data)
        for old, new in renames.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        # Older payloads named the reminder channel as a bare string.
        if isinstance(data.get("action"), str):
            kind = data.pop("action")
            content = None
            for key in ("whatsappContent", "emailContent", "messageContent"):
                if data.get(key):
                    content = data[key]
                    break
            if data.get("reminder") is None:
                data["reminder"] = {"kind": kind, "content": content}
        return data

    def matches(self, event: "Event") -> bool:
        if event.is_tick or event.type != self.expected_event_type:
            return False
        return criteria_matches(self.match_criteria, event)


Block = Annotated[Union[ActionBlock, WaitBlock], Field(discriminator="type")]


class JourneyDefinition(CamelModel):
    name: str = Field(..., min_length=1, examples=["Sample_Journey"])
    version: int = 0
    blocks: List[Block]
    registered_at: Optional[datetime] = None

    def block(self, ref) -> Optional[Union[ActionBlock, WaitBlock]]:
        if ref is None:
            return None
        for block in self.blocks:
            if block.name == ref:
                return block
        return None

    @property
    def first_block(self) -> Optional[str]:
        return self.blocks[0].name if self.blocks else None


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1, examples=["email_response"])
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "Event":
        """Build an event from a flat request body: ``{type, ...payload}``."""
        body = dict(body)
        event_type = body.pop("type", None)
        return cls(type=event_type, payload=body)

    @classmethod
    def from_external(cls, body: Dict[str, Any]) -> "Event":
        """Like ``from_body``, but refuses the scheduler's reserved tick type."""
        event = cls.from_body(body)
        if event.is_tick:
            raise InvalidEventError(f"Event type {TICK_EVENT_TYPE} is reserved")
        return event

    @classmethod
    def tick(cls) -> "Event":
        return cls(type=TICK_EVENT_TYPE)

    @property
    def is_tick(self) -> bool:
        return self.type == TICK_EVENT_TYPE

    def field(self, key: str):
        if key == "type":
            return self.type
        return self.payload.get(key)


def criteria_matches(criteria: Dict[str, Any], event: Event) -> bool:
    """
    Evaluate declarative match criteria against an event.

    Each key names an event field (``type`` is the event type, anything else a
    payload field). A scalar value must be equal, ``{"in": [...]}`` must
    contain the field value. Every entry has to hold.
    """
    for key, expected in criteria.items():
        actual = event.field(key)
        if isinstance(expected, dict):
            if actual not in expected.get("in", []):
                return False
        elif actual != expected:
            return False
    return True
