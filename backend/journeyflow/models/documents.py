from datetime import datetime
from typing import List, Optional

import pymongo
from beanie import Document
from pydantic import Field

from journeyflow.clock import utcnow
from journeyflow.models.journal import JournalEntry
from journeyflow.models.journey import JourneyDefinition
from journeyflow.models.user_state import UserJourneyState


class JourneyDocument(Document):
    name: str = Field(..., examples=["Sample_Journey"])
    version: int
    blocks: List[dict]
    registered_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "journeys"
        indexes = [
            pymongo.IndexModel(
                [("name", pymongo.ASCENDING), ("version", pymongo.DESCENDING)],
                unique=True,
            ),
        ]

    @classmethod
    def from_definition(cls, definition: JourneyDefinition) -> "JourneyDocument":
        dumped = definition.model_dump(mode="json", by_alias=True)
        return cls(
            name=definition.name,
            version=definition.version,
            blocks=dumped["blocks"],
            registered_at=definition.registered_at or utcnow(),
        )

    def to_definition(self) -> JourneyDefinition:
        return JourneyDefinition(
            name=self.name,
            version=self.version,
            blocks=self.blocks,
            registered_at=self.registered_at,
        )


class UserJourneyDocument(Document):
    user_id: str = Field(..., examples=["123"])
    journey_name: str = Field(..., examples=["Sample_Journey"])
    journey_version: int
    current_block: Optional[str] = None
    entered_block_at: datetime
    journey_started_at: datetime
    completed_at: Optional[datetime] = None
    reminders_sent: int = 0
    revision: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "user_journeys"
        indexes = [
            pymongo.IndexModel(
                [("user_id", pymongo.ASCENDING), ("journey_name", pymongo.ASCENDING)],
                unique=True,
            ),
            "current_block",
        ]

    @classmethod
    def from_state(cls, state: UserJourneyState) -> "UserJourneyDocument":
        return cls(**state.model_dump())

    def to_state(self) -> UserJourneyState:
        return UserJourneyState(
            **self.model_dump(include=set(UserJourneyState.model_fields))
        )


class CrmEntryDocument(Document):
    user_id: str = Field(..., examples=["123"])
    added_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "crm_users"
        indexes = [
            pymongo.IndexModel([("user_id", pymongo.ASCENDING)], unique=True),
        ]


class JournalDocument(Document):
    """
    Represents a single event or state transition in a user's journey.
    Used for auditing and debugging journey flows.
    """
    user_id: str
    journey_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    block: Optional[str] = None
    details: Optional[dict] = None

    class Settings:
        name = "journey_journal"
        indexes = ["user_id"]

    @classmethod
    def from_entry(cls, entry: JournalEntry) -> "JournalDocument":
        return cls(**entry.model_dump())

    def to_entry(self) -> JournalEntry:
        return JournalEntry(**self.model_dump(include=set(JournalEntry.model_fields)))
