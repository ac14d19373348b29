"""Store interfaces used by the journey engine and scheduler.

Every store is async so the in-memory and Mongo implementations are
interchangeable.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from journeyflow.models.journal import JournalEntry
from journeyflow.models.journey import JourneyDefinition
from journeyflow.models.user_state import UserJourneyState


class JourneyStore(ABC):
    @abstractmethod
    async def install(self, definition: JourneyDefinition) -> JourneyDefinition:
        """Store a new version of the definition and return it with its version set."""

    @abstractmethod
    async def get(self, name: str, version: Optional[int] = None) -> Optional[JourneyDefinition]:
        """Return the given version, or the latest one when ``version`` is None."""

    @abstractmethod
    async def list_latest(self) -> List[JourneyDefinition]:
        ...


class UserStateStore(ABC):
    @abstractmethod
    async def get(self, user_id: str, journey_name: str) -> Optional[UserJourneyState]:
        ...

    @abstractmethod
    async def create(self, state: UserJourneyState) -> bool:
        """Insert the record unless one exists for the same user and journey."""

    @abstractmethod
    async def save(self, state: UserJourneyState, expected_revision: int) -> None:
        """
        Replace the record if its stored revision is still ``expected_revision``.

        Raises ConcurrentUpdateError otherwise.
        """

    @abstractmethod
    async def list_active(self) -> List[UserJourneyState]:
        """Records whose journey is not complete."""

    @abstractmethod
    async def list_all(self, user_id: Optional[str] = None) -> List[UserJourneyState]:
        ...


class CrmStore(ABC):
    @abstractmethod
    async def add(self, user_id: str) -> bool:
        """Record the user; returns False if already present."""

    @abstractmethod
    async def list(self) -> List[str]:
        ...


class JournalStore(ABC):
    @abstractmethod
    async def append(self, entry: JournalEntry) -> None:
        ...

    @abstractmethod
    async def list(self, user_id: str, journey_name: Optional[str] = None) -> List[JournalEntry]:
        ...
