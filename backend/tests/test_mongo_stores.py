"""Tests for the Mongo stores with the Beanie documents mocked out."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import DuplicateKeyError

from journeyflow.errors import ConcurrentUpdateError
from journeyflow.models.journey import JourneyDefinition
from journeyflow.models.user_state import UserJourneyState
from journeyflow.stores.mongo import MongoCrmStore, MongoJourneyStore, MongoUserStateStore
from conftest import START


@pytest.fixture
def state():
    return UserJourneyState(
        user_id="123",
        journey_name="Sample_Journey",
        journey_version=1,
        current_block="Add to CRM",
        entered_block_at=START,
        journey_started_at=START,
        revision=3,
    )


class TestMongoUserStateStore:
    """Tests for MongoUserStateStore."""

    @pytest.mark.asyncio
    async def test_save_checks_revision(self, state):
        with patch("journeyflow.stores.mongo.UserJourneyDocument") as document:
            update = document.find_one.return_value.update = AsyncMock(
                return_value=SimpleNamespace(matched_count=1)
            )

            await MongoUserStateStore().save(state, expected_revision=2)

        document.find_one.assert_called_once_with(
            {"user_id": "123", "journey_name": "Sample_Journey", "revision": 2}
        )
        fields = update.call_args[0][0]["$set"]
        assert fields["revision"] == 3
        assert fields["current_block"] == "Add to CRM"
        assert "updated_at" in fields

    @pytest.mark.asyncio
    async def test_save_conflict(self, state):
        with patch("journeyflow.stores.mongo.UserJourneyDocument") as document:
            document.find_one.return_value.update = AsyncMock(return_value=SimpleNamespace(matched_count=0))

            with pytest.raises(ConcurrentUpdateError):
                await MongoUserStateStore().save(state, expected_revision=2)

    @pytest.mark.asyncio
    async def test_create_existing(self, state):
        with patch("journeyflow.stores.mongo.UserJourneyDocument") as document:
            document.from_state.return_value.insert = AsyncMock(side_effect=DuplicateKeyError("duplicate"))

            assert await MongoUserStateStore().create(state) is False

    @pytest.mark.asyncio
    async def test_get_missing(self):
        with patch("journeyflow.stores.mongo.UserJourneyDocument") as document:
            document.find_one = AsyncMock(return_value=None)

            assert await MongoUserStateStore().get("123", "Sample_Journey") is None


class TestMongoJourneyStore:
    @pytest.mark.asyncio
    async def test_install_retries_taken_version(self, sample_journey):
        """Should pick the next version when another writer took the first one."""
        definition = JourneyDefinition.model_validate(sample_journey)
        with patch("journeyflow.stores.mongo.JourneyDocument") as document:
            document.find.return_value.sort.return_value.first_or_none = AsyncMock(
                side_effect=[None, SimpleNamespace(version=1)]
            )
            document.from_definition.return_value.insert = AsyncMock(
                side_effect=[DuplicateKeyError("duplicate"), None]
            )

            stored = await MongoJourneyStore().install(definition)

        assert stored.version == 2
        assert stored.registered_at is not None


class TestMongoCrmStore:
    @pytest.mark.asyncio
    async def test_add_is_idempotent(self):
        with patch("journeyflow.stores.mongo.CrmEntryDocument") as document:
            document.return_value.insert = AsyncMock(side_effect=[None, DuplicateKeyError("duplicate")])
            store = MongoCrmStore()

            assert await store.add("123") is True
            assert await store.add("123") is False

    @pytest.mark.asyncio
    async def test_list_in_insertion_order(self):
        with patch("journeyflow.stores.mongo.CrmEntryDocument") as document:
            document.find_all.return_value.sort.return_value.to_list = AsyncMock(
                return_value=[MagicMock(user_id="123"), MagicMock(user_id="456")]
            )

            assert await MongoCrmStore().list() == ["123", "456"]
