from datetime import datetime
from typing import Optional

from pydantic import Field

from journeyflow.models.journey import CamelModel


class UserJourneyState(CamelModel):
    """
    A user's position in one journey.

    ``current_block`` is ``None`` once the journey is complete; the record is
    kept for auditing. ``revision`` increases with every write and guards
    against lost updates.
    """

    user_id: str = Field(..., examples=["123"])
    journey_name: str = Field(..., examples=["Sample_Journey"])
    journey_version: int
    current_block: Optional[str] = Field(None, examples=["Send Email"])
    entered_block_at: datetime
    journey_started_at: datetime
    completed_at: Optional[datetime] = None
    reminders_sent: int = 0
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.current_block is None

    @property
    def key(self):
        return (self.user_id, self.journey_name)
