"""MongoDB-backed entity store for listings, offers, chats, messages and wishlists.

Every method returns plain dicts with the Mongo ``_id`` rewritten to a string
``id`` so callers never touch ``ObjectId``. Lookups with an id that is not a
valid ``ObjectId`` behave like a miss.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


def _oid(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize_objectid(value):
    if isinstance(value, ObjectId):
        return str(value)
    elif isinstance(value, list):
        return [serialize_objectid(v) for v in value]
    elif isinstance(value, dict):
        return {k: serialize_objectid(v) for k, v in value.items()}
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = serialize_objectid(doc)
    doc["id"] = doc.pop("_id", doc.get("id"))
    return doc


def participant_key(participants: Iterable[str]) -> str:
    """Order-independent key for a chat's participant pair."""
    return "|".join(sorted(str(p) for p in participants))


class MongoEntityStore:
    def __init__(self, database):
        self.db = database

    # ---------- Listings ----------

    async def get_listing(self, listing_id: str) -> Optional[dict]:
        oid = _oid(listing_id)
        if oid is None:
            return None
        return serialize_doc(await self.db.listings.find_one({"_id": oid}))

    async def insert_listing(self, doc: dict) -> dict:
        doc = dict(doc)
        result = await self.db.listings.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_doc(doc)

    async def update_listing(self, listing_id: str, fields: dict) -> Optional[dict]:
        oid = _oid(listing_id)
        if oid is None:
            return None
        updated = await self.db.listings.find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(updated)

    async def mark_listing_sold(
        self, listing_id: str, buyer_id: Optional[str], fields: dict, now: Optional[datetime] = None
    ) -> Optional[dict]:
        """Compare-and-set sale: returns None if the listing is missing or already sold."""
        oid = _oid(listing_id)
        if oid is None:
            return None
        now = now or datetime.now(timezone.utc)
        updated = await self.db.listings.find_one_and_update(
            {"_id": oid, "sold": {"$ne": True}},
            {"$set": {**fields, "sold": True, "sold_to_user_id": buyer_id, "sold_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(updated)

    async def delete_listing(self, listing_id: str) -> bool:
        oid = _oid(listing_id)
        if oid is None:
            return False
        result = await self.db.listings.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def find_expired_listings(self, now: datetime) -> List[dict]:
        cursor = self.db.listings.find({"expires_at": {"$lte": now}})
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    async def find_listings_expiring_in_window(
        self, start_hours: float, end_hours: float, now: Optional[datetime] = None
    ) -> List[dict]:
        now = now or datetime.now(timezone.utc)
        window_start = now + timedelta(hours=start_hours)
        window_end = now + timedelta(hours=end_hours)
        cursor = self.db.listings.find({
            "expires_at": {"$gte": window_start, "$lt": window_end},
            "sold": {"$ne": True},
        })
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    # ---------- Offers ----------

    async def get_offer(self, offer_id: str) -> Optional[dict]:
        oid = _oid(offer_id)
        if oid is None:
            return None
        return serialize_doc(await self.db.offers.find_one({"_id": oid}))

    async def insert_offer(self, doc: dict) -> dict:
        doc = dict(doc)
        result = await self.db.offers.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_doc(doc)

    async def find_offers_for_listing(self, listing_id: str) -> List[dict]:
        cursor = self.db.offers.find({"items.id": str(listing_id)}).sort("created_at", -1)
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    async def find_offers_by_buyer(self, buyer_id: str) -> List[dict]:
        cursor = self.db.offers.find({"buyer_id": buyer_id}).sort("created_at", -1)
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    async def update_offer_status(
        self, offer_id: str, new_status: str, expected_statuses: Iterable[str]
    ) -> Optional[dict]:
        """Compare-and-set: only moves the offer if it is still in one of ``expected_statuses``."""
        oid = _oid(offer_id)
        if oid is None:
            return None
        updated = await self.db.offers.find_one_and_update(
            {"_id": oid, "status": {"$in": list(expected_statuses)}},
            {"$set": {"status": new_status, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(updated)

    async def delete_offers_for_listing(self, listing_id: str) -> int:
        result = await self.db.offers.delete_many({"items.id": str(listing_id)})
        return result.deleted_count

    # ---------- Chats & messages ----------

    async def get_chat(self, chat_id: str) -> Optional[dict]:
        oid = _oid(chat_id)
        if oid is None:
            return None
        return serialize_doc(await self.db.chats.find_one({"_id": oid}))

    async def get_or_create_chat(
        self, listing_id: str, participants: List[str], offer_id: Optional[str] = None
    ) -> dict:
        key = participant_key(participants)
        now = datetime.now(timezone.utc)
        query = {"listing_id": str(listing_id), "participant_key": key}
        try:
            chat = await self.db.chats.find_one_and_update(
                query,
                {"$setOnInsert": {
                    "participants": list(participants),
                    "offer_id": offer_id,
                    "last_message": None,
                    "created_at": now,
                    "updated_at": now,
                }},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost the upsert race to a concurrent caller; theirs is the chat.
            chat = await self.db.chats.find_one(query)
        return serialize_doc(chat)

    async def find_chats_for_user(self, user_id: str) -> List[dict]:
        cursor = self.db.chats.find({"participants": user_id}).sort("updated_at", -1)
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    async def update_chat_summary(self, chat_id: str, last_message: dict) -> bool:
        """Write ``last_message`` unless the stored summary is already newer."""
        oid = _oid(chat_id)
        if oid is None:
            return False
        created_at = last_message["created_at"]
        result = await self.db.chats.update_one(
            {
                "_id": oid,
                "$or": [
                    {"last_message": None},
                    {"last_message.created_at": {"$lte": created_at}},
                ],
            },
            {"$set": {"last_message": last_message, "updated_at": created_at}},
        )
        return result.modified_count > 0

    async def delete_chats_for_listing(self, listing_id: str) -> int:
        """Delete every chat anchored to the listing together with its messages."""
        listing_id = str(listing_id)
        chats = await self.db.chats.delete_many({"listing_id": listing_id})
        messages = await self.db.messages.delete_many({"listing_id": listing_id})
        logger.debug(
            "Deleted %d chats and %d messages for listing %s",
            chats.deleted_count, messages.deleted_count, listing_id,
        )
        return chats.deleted_count

    async def insert_message(self, doc: dict) -> dict:
        doc = dict(doc)
        result = await self.db.messages.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_doc(doc)

    async def find_messages(self, chat_id: str) -> List[dict]:
        cursor = self.db.messages.find({"chat_id": str(chat_id)}).sort("created_at", 1)
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    # ---------- Users & wishlists ----------

    async def get_user(self, user_id: str) -> Optional[dict]:
        candidates = [user_id]
        oid = _oid(user_id)
        if oid is not None:
            candidates.append(oid)
        return serialize_doc(await self.db.users.find_one({"_id": {"$in": candidates}}))

    async def get_users_who_wishlisted(self, listing_id: str) -> List[str]:
        cursor = self.db.wishlist.find({"listing_id": str(listing_id)}, {"user_id": 1})
        return [str(entry["user_id"]) for entry in await cursor.to_list(length=None)]

    # ---------- Notifications ----------

    async def insert_notification(self, doc: dict) -> dict:
        doc = dict(doc)
        result = await self.db.notifications.insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_doc(doc)

    async def find_notifications(self, user_id: str) -> List[dict]:
        cursor = self.db.notifications.find({"user_id": user_id}).sort("created_at", -1)
        return [serialize_doc(doc) for doc in await cursor.to_list(length=None)]

    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        oid = _oid(notification_id)
        if oid is None:
            return False
        result = await self.db.notifications.update_one(
            {"_id": oid, "user_id": user_id},
            {"$set": {"is_read": True}},
        )
        return result.matched_count > 0

    async def mark_all_notifications_read(self, user_id: str) -> int:
        result = await self.db.notifications.update_many(
            {"user_id": user_id, "is_read": False},
            {"$set": {"is_read": True}},
        )
        return result.modified_count

    async def delete_notification(self, notification_id: str, user_id: str) -> bool:
        oid = _oid(notification_id)
        if oid is None:
            return False
        result = await self.db.notifications.delete_one({"_id": oid, "user_id": user_id})
        return result.deleted_count > 0
