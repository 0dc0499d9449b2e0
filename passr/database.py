from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
import logging

from passr.config import MONGO_URI, MONGO_DB_NAME

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(MONGO_URI)
db = client[MONGO_DB_NAME]

__all__ = ["client", "db", "ensure_indexes"]


async def ensure_indexes(database=None):
    """Create the indexes the lifecycle engine relies on (idempotent)."""
    database = database if database is not None else db

    await database.listings.create_index([("expires_at", ASCENDING)])
    await database.listings.create_index([("seller_id", ASCENDING)])

    await database.offers.create_index([("items.id", ASCENDING)])
    await database.offers.create_index([("buyer_id", ASCENDING)])
    await database.offers.create_index([("seller_id", ASCENDING)])
    await database.offers.create_index([("created_at", DESCENDING)])

    # One chat per (listing, unordered participant pair)
    await database.chats.create_index(
        [("listing_id", ASCENDING), ("participant_key", ASCENDING)],
        unique=True,
    )
    await database.chats.create_index([("participants", ASCENDING)])

    await database.messages.create_index([("chat_id", ASCENDING), ("created_at", ASCENDING)])
    await database.messages.create_index([("listing_id", ASCENDING)])

    await database.wishlist.create_index(
        [("user_id", ASCENDING), ("listing_id", ASCENDING)],
        unique=True,
    )
    await database.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    logger.info("MongoDB indexes ensured on %s", database.name)
