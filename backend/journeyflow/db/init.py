import logging
from pymongo import AsyncMongoClient
from beanie import init_beanie

from journeyflow import config
from journeyflow.models.documents import (
    CrmEntryDocument,
    JournalDocument,
    JourneyDocument,
    UserJourneyDocument,
)

logger = logging.getLogger(__name__)

_client = None


async def init_db():
    global _client
    try:
        logger.info("Initializing database connection...")
        client = AsyncMongoClient(config.MONGO_URI, tz_aware=True)

        # Test the connection
        await client.admin.command('ping')
        logger.info("MongoDB connection test successful.")

        await init_beanie(
            database=client[config.MONGO_DB_NAME],
            document_models=[JourneyDocument, UserJourneyDocument, CrmEntryDocument, JournalDocument]
        )
        _client = client
        logger.info("MongoDB connection established and Beanie initialized.")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise


def get_database():
    if _client is None:
        raise RuntimeError("Database is not initialized")
    return _client[config.MONGO_DB_NAME]
