import asyncio
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from passr.dependencies import get_entity_store, get_notifier, get_object_store
from passr.main import app
from passr.models.listing import ListingUpdate
from passr.routes.listings import update_listing as put_listing
from passr.services.chat_service import ChatService
from passr.services.offer_service import OfferService
from passr.tasks.listing_cleanup import cleanup_expired_listings
from passr.utils.auth import TokenUser, get_current_user


@pytest.fixture
def current_user():
    return {"id": "seller"}


@pytest.fixture
def client(store, object_store, notifier, current_user):
    app.dependency_overrides[get_entity_store] = lambda: store
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_current_user] = lambda: TokenUser(id=current_user["id"])
    # Not used as a context manager, so startup (indexes, scheduler) never runs
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_listing(client, **fields):
    body = {"title": "Desk Lamp", "price": 20, "category": "Furniture"}
    body.update(fields)
    response = client.post("/listings/", json=body)
    assert response.status_code == 201
    return response.json()


def _offer_body(listing, amount=15):
    return {
        "items": [{"id": listing["id"], "title": listing["title"], "price": listing["price"]}],
        "total_offer_amount": amount,
    }


class TestListingRoutes:
    def test_create_sets_expiry_and_cover(self, client):
        listing = _create_listing(client, images=["listings/seller/a", "listings/seller/b"])

        assert listing["seller_id"] == "seller"
        assert listing["cover_image"] == "listings/seller/a"
        assert listing["sold"] is False
        expires_at = datetime.fromisoformat(listing["expires_at"].replace("Z", "+00:00"))
        posted_at = datetime.fromisoformat(listing["posted_at"].replace("Z", "+00:00"))
        assert (expires_at - posted_at).total_seconds() == 24 * 3600

    def test_missing_listing(self, client):
        assert client.get("/listings/nope").status_code == 404

    def test_only_owner_can_update(self, client, current_user):
        listing = _create_listing(client)
        current_user["id"] = "intruder"

        response = client.put(f"/listings/{listing['id']}", json={"price": 1})

        assert response.status_code == 403

    def test_price_drop_notifies_wishlisters(self, client, store, notifier):
        listing = _create_listing(client)
        store.add_wishlist("fan", listing["id"])
        store.add_wishlist("seller", listing["id"])

        response = client.put(f"/listings/{listing['id']}", json={"price": 12})

        assert response.status_code == 200
        assert [n["payload"]["type"] for n in notifier.to("fan")] == ["price_drop"]
        assert notifier.to("seller") == []

    def test_cannot_sell_to_self(self, client):
        listing = _create_listing(client)

        response = client.put(f"/listings/{listing['id']}", json={"sold": True, "sold_to_user_id": "seller"})

        assert response.status_code == 400

    def test_delete_cascades(self, client, store, object_store, current_user):
        listing = _create_listing(client, images=["listings/seller/a"])
        current_user["id"] = "buyer"
        assert client.post("/offers/", json=_offer_body(listing)).status_code == 201
        current_user["id"] = "seller"

        response = client.delete(f"/listings/{listing['id']}")

        assert response.status_code == 200
        assert response.json()["deleted_offer_count"] == 1
        assert response.json()["deleted_chat_count"] == 1
        assert store.listings == {}
        assert store.offers == {}
        assert store.messages == {}
        assert object_store.calls == [["listings/seller/a"]]

    def test_delete_reports_incomplete_cascade(self, client, store, monkeypatch):
        listing = _create_listing(client)

        async def broken(listing_id):
            raise RuntimeError("offers collection unavailable")

        monkeypatch.setattr(store, "delete_offers_for_listing", broken)

        response = client.delete(f"/listings/{listing['id']}")

        assert response.status_code == 502
        assert listing["id"] in store.listings

    async def test_expire_then_cleanup_tick(self, client, store, object_store):
        listing = _create_listing(client)

        response = client.patch(f"/listings/{listing['id']}/expire")
        assert response.status_code == 200
        assert store.listings[listing["id"]]["expires_at"] < datetime.now(timezone.utc)

        reports = await cleanup_expired_listings(store, object_store)

        assert [r.listing_id for r in reports] == [listing["id"]]
        assert store.listings == {}


class TestOfferRoutes:
    def test_offer_accept_and_sell(self, client, store, notifier, current_user):
        listing = _create_listing(client)

        current_user["id"] = "buyer-a"
        offer_a = client.post("/offers/", json=_offer_body(listing, 15)).json()
        current_user["id"] = "buyer-b"
        offer_b = client.post("/offers/", json=_offer_body(listing, 12)).json()
        assert offer_a["status"] == offer_b["status"] == "pending"

        current_user["id"] = "seller"
        response = client.put(f"/offers/{offer_a['id']}/status", json={"status": "accepted"})
        assert response.status_code == 200
        assert response.json()["status"] == "accepted"

        response = client.put(f"/listings/{listing['id']}", json={"sold": True, "sold_to_user_id": "buyer-a"})
        assert response.status_code == 200
        assert response.json()["sold"] is True

        assert store.offers[offer_a["id"]]["status"] == "sold"
        assert store.offers[offer_b["id"]]["status"] == "rejected"
        assert [n["payload"]["type"] for n in notifier.to("buyer-b")] == ["item_sold_other"]

    def test_self_offer_is_bad_request(self, client):
        listing = _create_listing(client)

        response = client.post("/offers/", json=_offer_body(listing))

        assert response.status_code == 400
        assert response.json()["detail"] == "You cannot make an offer on your own listing"

    def test_buyer_cannot_accept(self, client, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        offer = client.post("/offers/", json=_offer_body(listing)).json()

        response = client.put(f"/offers/{offer['id']}/status", json={"status": "accepted"})

        assert response.status_code == 403

    def test_unknown_offer(self, client):
        response = client.put("/offers/nope/status", json={"status": "accepted"})

        assert response.status_code == 404

    def test_outsider_cannot_view_offer(self, client, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        offer = client.post("/offers/", json=_offer_body(listing)).json()
        assert client.get(f"/offers/{offer['id']}").status_code == 200

        current_user["id"] = "stranger"
        assert client.get(f"/offers/{offer['id']}").status_code == 403

    def test_listing_offers_include_names(self, client, store, current_user):
        store.users["buyer"] = {"id": "buyer", "name": "Bea"}
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        client.post("/offers/", json=_offer_body(listing))
        current_user["id"] = "seller"

        response = client.get(f"/offers/listing/{listing['id']}")

        assert response.status_code == 200
        assert response.json()[0]["buyer_name"] == "Bea"


class TestListingSale:
    def test_second_sale_is_rejected(self, client, store, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer-a"
        client.post("/offers/", json=_offer_body(listing, 15))
        current_user["id"] = "seller"

        first = client.put(f"/listings/{listing['id']}", json={"sold": True, "sold_to_user_id": "buyer-a"})
        second = client.put(f"/listings/{listing['id']}", json={"sold": True, "sold_to_user_id": "buyer-b"})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["detail"] == "Listing is already sold"
        assert store.listings[listing["id"]]["sold_to_user_id"] == "buyer-a"

    def test_plain_update_cannot_rewrite_buyer(self, client, store):
        listing = _create_listing(client)
        client.put(f"/listings/{listing['id']}", json={"sold": True, "sold_to_user_id": "buyer-a"})

        response = client.put(f"/listings/{listing['id']}", json={"title": "Lamp", "sold_to_user_id": "buyer-b"})

        assert response.status_code == 200
        assert store.listings[listing["id"]]["sold_to_user_id"] == "buyer-a"
        assert store.listings[listing["id"]]["title"] == "Lamp"

    async def test_concurrent_sales_leave_one_winner(self, yielding_store, notifier):
        store = yielding_store
        offers = OfferService(store, ChatService(store), notifier)
        listing = store.add_listing(seller_id="seller")
        line = [{"id": listing["id"], "title": listing["title"], "price": listing["price"]}]
        for buyer_id in ("alice", "bob"):
            offer = await offers.create(buyer_id, line, 15)
            await offers.set_status(offer["id"], "accepted", "seller")
        notifier.sent.clear()
        seller = TokenUser(id="seller")

        results = await asyncio.gather(
            *(
                put_listing(
                    listing["id"],
                    ListingUpdate(sold=True, sold_to_user_id=buyer_id),
                    user=seller,
                    store=store,
                    notifier=notifier,
                    offers=offers,
                )
                for buyer_id in ("alice", "bob")
            ),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], HTTPException)
        assert failures[0].status_code == 400

        winner = store.listings[listing["id"]]["sold_to_user_id"]
        statuses = {o["buyer_id"]: o["status"] for o in store.offers.values()}
        assert list(statuses.values()).count("sold") == 1
        assert statuses[winner] == "sold"
        item_sold = [n["user_id"] for n in notifier.sent if n["payload"]["type"] == "item_sold"]
        assert item_sold == [winner]


class TestChatRoutes:
    def test_messages_flow_and_notify_other_side(self, client, notifier, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer"

        chat = client.post("/chats/", json={"other_user_id": "seller", "listing_id": listing["id"]})
        assert chat.status_code == 201
        chat_id = chat.json()["id"]

        sent = client.post(f"/chats/{chat_id}/messages", json={"text": "Is this available?"})
        assert sent.status_code == 201
        assert [n["payload"]["type"] for n in notifier.to("seller")] == ["message"]

        chats = client.get("/chats/").json()
        assert chats[0]["last_message"]["text"] == "Is this available?"
        assert chats[0]["other_user"]["id"] == "seller"
        assert chats[0]["listing"]["title"] == "Desk Lamp"

    def test_outsider_cannot_read_messages(self, client, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        chat_id = client.post("/chats/", json={"other_user_id": "seller", "listing_id": listing["id"]}).json()["id"]

        current_user["id"] = "stranger"
        assert client.get(f"/chats/{chat_id}/messages").status_code == 403

    @pytest.mark.parametrize("message_type", ["offer", "item_sold"])
    def test_system_message_types_rejected(self, client, store, notifier, current_user, message_type):
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        chat_id = client.post("/chats/", json={"other_user_id": "seller", "listing_id": listing["id"]}).json()["id"]

        response = client.post(f"/chats/{chat_id}/messages", json={"text": "sold to me!", "type": message_type})

        assert response.status_code == 400
        assert response.json()["detail"] == f"Cannot send {message_type} messages"
        assert store.messages == {}
        assert notifier.sent == []

    def test_schedule_message_accepted(self, client, current_user):
        listing = _create_listing(client)
        current_user["id"] = "buyer"
        chat_id = client.post("/chats/", json={"other_user_id": "seller", "listing_id": listing["id"]}).json()["id"]

        response = client.post(f"/chats/{chat_id}/messages", json={
            "text": "Meet at the library?",
            "type": "schedule",
            "schedule": {"date": "2024-05-02", "time": "14:00", "location": "Library"},
        })

        assert response.status_code == 201
        assert response.json()["message_type"] == "schedule"

    def test_chat_with_self_rejected(self, client):
        listing = _create_listing(client)

        response = client.post("/chats/", json={"other_user_id": "seller", "listing_id": listing["id"]})

        assert response.status_code == 400


class TestNotificationRoutes:
    def test_inbox_read_and_delete(self, client, store):
        note = store._insert(store.notifications, {"user_id": "seller", "type": "offer", "is_read": False})

        assert len(client.get("/notifications/").json()["notifications"]) == 1
        assert client.patch(f"/notifications/{note['id']}/read").status_code == 200
        assert store.notifications[note["id"]]["is_read"] is True
        assert client.delete(f"/notifications/{note['id']}").status_code == 200
        assert client.delete(f"/notifications/{note['id']}").status_code == 404
