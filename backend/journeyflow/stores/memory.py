from typing import Dict, List, Optional, Tuple

from journeyflow.clock import utcnow
from journeyflow.errors import ConcurrentUpdateError
from journeyflow.models.journal import JournalEntry
from journeyflow.models.journey import JourneyDefinition
from journeyflow.models.user_state import UserJourneyState
from journeyflow.stores.base import CrmStore, JournalStore, JourneyStore, UserStateStore


class InMemoryJourneyStore(JourneyStore):
    def __init__(self):
        self._versions: Dict[str, List[JourneyDefinition]] = {}

    async def install(self, definition: JourneyDefinition) -> JourneyDefinition:
        versions = self._versions.setdefault(definition.name, [])
        stored = definition.model_copy(
            update={"version": len(versions) + 1, "registered_at": utcnow()}
        )
        versions.append(stored)
        return stored

    async def get(self, name: str, version: Optional[int] = None) -> Optional[JourneyDefinition]:
        versions = self._versions.get(name)
        if not versions:
            return None
        if version is None:
            return versions[-1]
        if 1 <= version <= len(versions):
            return versions[version - 1]
        return None

    async def list_latest(self) -> List[JourneyDefinition]:
        return [versions[-1] for versions in self._versions.values() if versions]


class InMemoryUserStateStore(UserStateStore):
    def __init__(self):
        self._states: Dict[Tuple[str, str], UserJourneyState] = {}

    async def get(self, user_id: str, journey_name: str) -> Optional[UserJourneyState]:
        return self._states.get((user_id, journey_name))

    async def create(self, state: UserJourneyState) -> bool:
        if state.key in self._states:
            return False
        self._states[state.key] = state
        return True

    async def save(self, state: UserJourneyState, expected_revision: int) -> None:
        current = self._states.get(state.key)
        if current is None or current.revision != expected_revision:
            raise ConcurrentUpdateError(
                f"State of user {state.user_id} in {state.journey_name} changed concurrently"
            )
        self._states[state.key] = state

    async def list_active(self) -> List[UserJourneyState]:
        return [state for state in self._states.values() if not state.is_terminal]

    async def list_all(self, user_id: Optional[str] = None) -> List[UserJourneyState]:
        return [
            state for state in self._states.values()
            if user_id is None or state.user_id == user_id
        ]


class InMemoryCrmStore(CrmStore):
    def __init__(self):
        self._users: List[str] = []

    async def add(self, user_id: str) -> bool:
        if user_id in self._users:
            return False
        self._users.append(user_id)
        return True

    async def list(self) -> List[str]:
        return list(self._users)


class InMemoryJournalStore(JournalStore):
    def __init__(self):
        self._entries: List[JournalEntry] = []

    async def append(self, entry: JournalEntry) -> None:
        self._entries.append(entry)

    async def list(self, user_id: str, journey_name: Optional[str] = None) -> List[JournalEntry]:
        return [
            entry for entry in self._entries
            if entry.user_id == user_id
            and (journey_name is None or entry.journey_name == journey_name)
        ]
