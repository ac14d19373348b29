import logging
from typing import List, Optional

import pymongo
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError

from journeyflow.clock import utcnow
from journeyflow.errors import ConcurrentUpdateError
from journeyflow.models.documents import (
    CrmEntryDocument,
    JournalDocument,
    JourneyDocument,
    UserJourneyDocument,
)
from journeyflow.models.journal import JournalEntry
from journeyflow.models.journey import JourneyDefinition
from journeyflow.models.user_state import UserJourneyState
from journeyflow.stores.base import CrmStore, JournalStore, JourneyStore, UserStateStore

logger = logging.getLogger(__name__)

_INSTALL_ATTEMPTS = 3


class MongoJourneyStore(JourneyStore):
    async def install(self, definition: JourneyDefinition) -> JourneyDefinition:
        for attempt in range(_INSTALL_ATTEMPTS):
            latest = await JourneyDocument.find(
                {"name": definition.name}
            ).sort([("version", pymongo.DESCENDING)]).first_or_none()
            version = latest.version + 1 if latest else 1
            stored = definition.model_copy(update={"version": version, "registered_at": utcnow()})
            try:
                await JourneyDocument.from_definition(stored).insert()
                return stored
            except DuplicateKeyError:
                logger.warning(
                    f"[JOURNEY_STORE] Version {version} of {definition.name} taken concurrently, "
                    f"retry {attempt + 1}/{_INSTALL_ATTEMPTS}"
                )
        raise ConcurrentUpdateError(f"Could not install journey {definition.name}")

    async def get(self, name: str, version: Optional[int] = None) -> Optional[JourneyDefinition]:
        if version is None:
            doc = await JourneyDocument.find(
                {"name": name}
            ).sort([("version", pymongo.DESCENDING)]).first_or_none()
        else:
            doc = await JourneyDocument.find_one({"name": name, "version": version})
        return doc.to_definition() if doc else None

    async def list_latest(self) -> List[JourneyDefinition]:
        docs = await JourneyDocument.find_all().sort(
            [("name", pymongo.ASCENDING), ("version", pymongo.DESCENDING)]
        ).to_list()
        latest = {}
        for doc in docs:
            latest.setdefault(doc.name, doc)
        return [doc.to_definition() for doc in latest.values()]


class MongoUserStateStore(UserStateStore):
    async def get(self, user_id: str, journey_name: str) -> Optional[UserJourneyState]:
        doc = await UserJourneyDocument.find_one({"user_id": user_id, "journey_name": journey_name})
        return doc.to_state() if doc else None

    async def create(self, state: UserJourneyState) -> bool:
        try:
            await UserJourneyDocument.from_state(state).insert()
        except DuplicateKeyError:
            return False
        return True

    async def save(self, state: UserJourneyState, expected_revision: int) -> None:
        fields = state.model_dump(exclude={"user_id", "journey_name"})
        fields["updated_at"] = utcnow()
        result = await UserJourneyDocument.find_one(
            {"user_id": state.user_id, "journey_name": state.journey_name, "revision": expected_revision}
        ).update({"$set": fields}, response_type=UpdateResponse.UPDATE_RESULT)
        if result is None or result.matched_count != 1:
            raise ConcurrentUpdateError(
                f"State of user {state.user_id} in {state.journey_name} changed concurrently"
            )

    async def list_active(self) -> List[UserJourneyState]:
        docs = await UserJourneyDocument.find({"current_block": {"$ne": None}}).to_list()
        return [doc.to_state() for doc in docs]

    async def list_all(self, user_id: Optional[str] = None) -> List[UserJourneyState]:
        query = {"user_id": user_id} if user_id is not None else {}
        docs = await UserJourneyDocument.find(query).to_list()
        return [doc.to_state() for doc in docs]


class MongoCrmStore(CrmStore):
    async def add(self, user_id: str) -> bool:
        try:
            await CrmEntryDocument(user_id=user_id).insert()
        except DuplicateKeyError:
            return False
        return True

    async def list(self) -> List[str]:
        docs = await CrmEntryDocument.find_all().sort([("added_at", pymongo.ASCENDING)]).to_list()
        return [doc.user_id for doc in docs]


class MongoJournalStore(JournalStore):
    async def append(self, entry: JournalEntry) -> None:
        await JournalDocument.from_entry(entry).insert()

    async def list(self, user_id: str, journey_name: Optional[str] = None) -> List[JournalEntry]:
        query = {"user_id": user_id}
        if journey_name is not None:
            query["journey_name"] = journey_name
        docs = await JournalDocument.find(query).sort([("timestamp", pymongo.ASCENDING)]).to_list()
        return [doc.to_entry() for doc in docs]
