# tests/conftest.py

import asyncio
import copy
import inspect
import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("CLOUDINARY_CLOUD_NAME", "passr-test")

import pytest
from bson import ObjectId

from passr.services.chat_service import ChatService
from passr.services.offer_service import OfferService
from passr.store.entity_store import participant_key


class FakeEntityStore:
    """In-memory stand-in for MongoEntityStore with the same method contract."""

    def __init__(self):
        self.listings = {}
        self.offers = {}
        self.chats = {}
        self.messages = {}
        self.users = {}
        self.wishlist = []
        self.notifications = {}

    @staticmethod
    def _new_id() -> str:
        return str(ObjectId())

    def _insert(self, table: dict, doc: dict) -> dict:
        doc = copy.deepcopy(doc)
        doc["id"] = doc.get("id") or self._new_id()
        table[doc["id"]] = doc
        return copy.deepcopy(doc)

    # listings
    async def get_listing(self, listing_id):
        return copy.deepcopy(self.listings.get(str(listing_id)))

    async def insert_listing(self, doc):
        return self._insert(self.listings, doc)

    async def update_listing(self, listing_id, fields):
        listing = self.listings.get(str(listing_id))
        if listing is None:
            return None
        listing.update(copy.deepcopy(fields))
        return copy.deepcopy(listing)

    async def mark_listing_sold(self, listing_id, buyer_id, fields, now=None):
        listing = self.listings.get(str(listing_id))
        if listing is None or listing.get("sold"):
            return None
        listing.update(copy.deepcopy(fields))
        listing.update({"sold": True, "sold_to_user_id": buyer_id, "sold_at": now or datetime.now(timezone.utc)})
        return copy.deepcopy(listing)

    async def delete_listing(self, listing_id):
        return self.listings.pop(str(listing_id), None) is not None

    async def find_expired_listings(self, now):
        return [copy.deepcopy(l) for l in self.listings.values() if l["expires_at"] <= now]

    async def find_listings_expiring_in_window(self, start_hours, end_hours, now=None):
        now = now or datetime.now(timezone.utc)
        start = now + timedelta(hours=start_hours)
        end = now + timedelta(hours=end_hours)
        return [
            copy.deepcopy(l) for l in self.listings.values()
            if start <= l["expires_at"] < end and not l.get("sold")
        ]

    # offers
    async def get_offer(self, offer_id):
        return copy.deepcopy(self.offers.get(str(offer_id)))

    async def insert_offer(self, doc):
        return self._insert(self.offers, doc)

    async def find_offers_for_listing(self, listing_id):
        found = [o for o in self.offers.values() if any(i["id"] == str(listing_id) for i in o["items"])]
        found.sort(key=lambda o: o["created_at"], reverse=True)
        return copy.deepcopy(found)

    async def find_offers_by_buyer(self, buyer_id):
        found = [o for o in self.offers.values() if o["buyer_id"] == buyer_id]
        found.sort(key=lambda o: o["created_at"], reverse=True)
        return copy.deepcopy(found)

    async def update_offer_status(self, offer_id, new_status, expected_statuses):
        offer = self.offers.get(str(offer_id))
        if offer is None or offer["status"] not in list(expected_statuses):
            return None
        offer["status"] = new_status
        offer["updated_at"] = datetime.now(timezone.utc)
        return copy.deepcopy(offer)

    async def delete_offers_for_listing(self, listing_id):
        doomed = [oid for oid, o in self.offers.items() if any(i["id"] == str(listing_id) for i in o["items"])]
        for oid in doomed:
            del self.offers[oid]
        return len(doomed)

    # chats & messages
    async def get_chat(self, chat_id):
        return copy.deepcopy(self.chats.get(str(chat_id)))

    async def get_or_create_chat(self, listing_id, participants, offer_id=None):
        key = participant_key(participants)
        for chat in self.chats.values():
            if chat["listing_id"] == str(listing_id) and chat["participant_key"] == key:
                return copy.deepcopy(chat)
        now = datetime.now(timezone.utc)
        return self._insert(self.chats, {
            "listing_id": str(listing_id),
            "participant_key": key,
            "participants": list(participants),
            "offer_id": offer_id,
            "last_message": None,
            "created_at": now,
            "updated_at": now,
        })

    async def find_chats_for_user(self, user_id):
        found = [c for c in self.chats.values() if user_id in c["participants"]]
        found.sort(key=lambda c: c["updated_at"], reverse=True)
        return copy.deepcopy(found)

    async def update_chat_summary(self, chat_id, last_message):
        chat = self.chats.get(str(chat_id))
        if chat is None:
            return False
        current = chat.get("last_message")
        if current is not None and current["created_at"] > last_message["created_at"]:
            return False
        chat["last_message"] = copy.deepcopy(last_message)
        chat["updated_at"] = last_message["created_at"]
        return True

    async def delete_chats_for_listing(self, listing_id):
        doomed = [cid for cid, c in self.chats.items() if c["listing_id"] == str(listing_id)]
        for cid in doomed:
            del self.chats[cid]
        for mid in [mid for mid, m in self.messages.items() if m["listing_id"] == str(listing_id)]:
            del self.messages[mid]
        return len(doomed)

    async def insert_message(self, doc):
        return self._insert(self.messages, doc)

    async def find_messages(self, chat_id):
        found = [m for m in self.messages.values() if m["chat_id"] == str(chat_id)]
        found.sort(key=lambda m: m["created_at"])
        return copy.deepcopy(found)

    # users & wishlists
    async def get_user(self, user_id):
        return copy.deepcopy(self.users.get(user_id))

    async def get_users_who_wishlisted(self, listing_id):
        return [entry["user_id"] for entry in self.wishlist if entry["listing_id"] == str(listing_id)]

    # notifications
    async def insert_notification(self, doc):
        return self._insert(self.notifications, doc)

    async def find_notifications(self, user_id):
        return copy.deepcopy([n for n in self.notifications.values() if n["user_id"] == user_id])

    async def mark_notification_read(self, notification_id, user_id):
        note = self.notifications.get(notification_id)
        if not note or note["user_id"] != user_id:
            return False
        note["is_read"] = True
        return True

    async def mark_all_notifications_read(self, user_id):
        count = 0
        for note in self.notifications.values():
            if note["user_id"] == user_id and not note["is_read"]:
                note["is_read"] = True
                count += 1
        return count

    async def delete_notification(self, notification_id, user_id):
        note = self.notifications.get(notification_id)
        if not note or note["user_id"] != user_id:
            return False
        del self.notifications[notification_id]
        return True

    # test helpers
    def add_listing(self, seller_id="seller-1", expires_in=timedelta(hours=12), **fields) -> dict:
        now = datetime.now(timezone.utc)
        doc = {
            "id": self._new_id(),
            "seller_id": seller_id,
            "title": "Desk Lamp",
            "price": 20.0,
            "category": "Furniture",
            "images": [],
            "cover_image": None,
            "sold": False,
            "status": "active",
            "posted_at": now,
            "expires_at": now + expires_in,
        }
        doc.update(fields)
        self.listings[doc["id"]] = doc
        return copy.deepcopy(doc)

    def add_wishlist(self, user_id, listing_id):
        self.wishlist.append({"user_id": user_id, "listing_id": listing_id, "created_at": datetime.now(timezone.utc)})


class YieldingEntityStore(FakeEntityStore):
    """Gives the event loop a turn before every store call, like a network round trip."""

    def __getattribute__(self, name):
        attr = super().__getattribute__(name)
        if name.startswith("_") or not inspect.iscoroutinefunction(attr):
            return attr

        async def yielding(*args, **kwargs):
            await asyncio.sleep(0)
            return await attr(*args, **kwargs)

        return yielding


class RecordingObjectStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def delete_objects(self, keys):
        self.calls.append(list(keys))
        if self.fail:
            raise RuntimeError("object store unavailable")


class RecordingNotifier:
    def __init__(self, failing_users=()):
        self.failing_users = set(failing_users)
        self.sent = []

    async def notify(self, user_id, title, body, payload):
        if user_id in self.failing_users:
            raise RuntimeError(f"push to {user_id} failed")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "payload": payload})

    def to(self, user_id):
        return [n for n in self.sent if n["user_id"] == user_id]


@pytest.fixture
def store():
    return FakeEntityStore()


@pytest.fixture
def yielding_store():
    return YieldingEntityStore()


@pytest.fixture
def object_store():
    return RecordingObjectStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def chat_service(store):
    return ChatService(store)


@pytest.fixture
def offer_service(store, chat_service, notifier):
    return OfferService(store, chat_service, notifier)
