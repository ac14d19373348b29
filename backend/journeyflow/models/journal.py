from datetime import datetime
from typing import Optional

from pydantic import Field

from journeyflow.clock import utcnow
from journeyflow.models.journey import CamelModel


class JournalEntry(CamelModel):
    """A single state transition in a user's journey, kept for auditing."""

    user_id: str
    journey_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    block: Optional[str] = None
    details: Optional[dict] = None
