"""
Offer negotiation state machine.

    pending  -> accepted | rejected
    accepted -> sold | rejected

``sold`` and ``rejected`` are terminal. Sellers drive ``accepted``/``rejected``
through ``set_status``; ``sold`` is only reached through ``resolve_on_sale``
when the seller marks the listing sold to a buyer. Every transition is a
compare-and-set on the stored status, so a duplicate trigger changes nothing
and sends nothing twice.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from passr.errors import InvalidOffer, InvalidTransition, NotFoundError, SelfOffer, Unauthorized, ValidationError
from passr.models.message import MessageType
from passr.models.offer import OfferStatus
from passr.services import notifications

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OfferStatus.PENDING.value: {OfferStatus.ACCEPTED.value, OfferStatus.REJECTED.value},
    OfferStatus.ACCEPTED.value: {OfferStatus.SOLD.value, OfferStatus.REJECTED.value},
}
SELLER_SETTABLE = {OfferStatus.ACCEPTED.value, OfferStatus.REJECTED.value}
OPEN_STATUSES = [OfferStatus.PENDING.value, OfferStatus.ACCEPTED.value]

ACCEPTED_CHAT_TEXT = "🎉 Offer Accepted! Please schedule a pickup time."
ITEM_SOLD_CHAT_TEXT = "🎉 Item marked as sold"


def _item_dict(item) -> dict:
    if hasattr(item, "model_dump"):
        item = item.model_dump()
    return {"id": str(item.get("id")), "title": item.get("title"), "price": float(item.get("price") or 0)}


def compose_offer_message(items: List[dict], total_amount: float, note: Optional[str] = None) -> str:
    """Chat text the buyer 'sends' when an offer is created."""
    if len(items) > 1:
        item_list = "\n".join(f"• {item.get('title') or 'Item'} (${item.get('price', 0):.0f})" for item in items)
        text = (
            "Hi! I'm interested in purchasing a bundle of the following items from your listings:"
            f"\n\n{item_list}\n\nI'd like to offer a total of ${total_amount:.0f} for this bundle."
        )
    else:
        text = (
            f"Hi! I'm interested in your {items[0].get('title') or 'item'}. "
            f"I'd like to make an offer of ${total_amount:.0f}."
        )

    if note and note.strip():
        text += f"\n\n{note.strip()}"
    return text


class OfferService:
    def __init__(self, store, chats, notifier):
        self.store = store
        self.chats = chats
        self.notifier = notifier

    async def resolve_seller_id(self, offer: dict) -> Optional[str]:
        """Stored seller if present, otherwise the seller of the first line item's listing."""
        if offer.get("seller_id"):
            return offer["seller_id"]
        items = offer.get("items") or []
        if not items:
            return None
        listing = await self.store.get_listing(str(items[0]["id"]))
        return listing.get("seller_id") if listing else None

    async def create(self, buyer_id: str, items, total_amount: Optional[float],
                     message: Optional[str] = None, seller_id: Optional[str] = None) -> dict:
        items = [_item_dict(item) for item in (items or [])]
        if not items:
            raise InvalidOffer("Items and offer amount are required")
        if total_amount is None or total_amount <= 0:
            raise InvalidOffer("Items and offer amount are required")
        if seller_id and seller_id == buyer_id:
            raise SelfOffer()

        listing_ids = list(dict.fromkeys(item["id"] for item in items))
        listings = await asyncio.gather(*(self.store.get_listing(lid) for lid in listing_ids))
        by_id = dict(zip(listing_ids, listings))

        first_listing = by_id[items[0]["id"]]
        if first_listing is None:
            raise InvalidOffer("Could not determine seller")
        seller_id = first_listing.get("seller_id")
        if not seller_id:
            raise InvalidOffer("Could not determine seller")
        if seller_id == buyer_id:
            raise SelfOffer()

        for listing_id, listing in by_id.items():
            if listing is None:
                raise InvalidOffer(f"Listing {listing_id} not found")
            if listing.get("seller_id") != seller_id:
                raise InvalidOffer("All items in an offer must come from the same seller")
            if listing.get("sold"):
                raise InvalidOffer(f"Listing {listing_id} is already sold")

        now = datetime.now(timezone.utc)
        offer = await self.store.insert_offer({
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "items": items,
            "total_offer_amount": float(total_amount),
            "message": message,
            "status": OfferStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        })

        chat = await self.chats.ensure_chat(items[0]["id"], [buyer_id, seller_id], offer["id"])
        await self.chats.append_message(
            chat["id"], buyer_id, MessageType.OFFER, compose_offer_message(items, total_amount, message)
        )

        buyer = await self.store.get_user(buyer_id)
        buyer_name = (buyer or {}).get("name") or "Someone"
        item_name = "your bundle" if len(items) > 1 else (items[0].get("title") or "your item")
        await notifications.notify_safely(
            notifications.send_offer_notification(
                self.notifier, seller_id, buyer_name, float(total_amount), item_name, first_listing, offer["id"]
            ),
            seller_id,
        )

        logger.info("Offer %s created by %s for seller %s", offer["id"], buyer_id, seller_id)
        return offer

    async def get_offer(self, offer_id: str) -> dict:
        offer = await self.store.get_offer(offer_id)
        if not offer:
            raise NotFoundError("Offer not found")
        return offer

    async def set_status(self, offer_id: str, new_status, acting_user_id: str) -> dict:
        new_status = OfferStatus(new_status).value
        if new_status not in SELLER_SETTABLE:
            raise InvalidOffer(f"Status '{new_status}' cannot be set directly")

        offer = await self.get_offer(offer_id)
        seller_id = await self.resolve_seller_id(offer)
        if not seller_id or seller_id != acting_user_id:
            raise Unauthorized()

        current = offer["status"]
        if current == new_status:
            return offer
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot move an offer from '{current}' to '{new_status}'")

        updated = await self.store.update_offer_status(offer["id"], new_status, [current])
        if updated is None:
            latest = await self.get_offer(offer_id)
            if latest["status"] == new_status:
                return latest
            raise InvalidTransition(f"Offer is already {latest['status']}")

        item_name = offer["items"][0].get("title") or "Item"
        if new_status == OfferStatus.ACCEPTED.value:
            chat = await self.chats.ensure_chat(
                offer["items"][0]["id"], [offer["buyer_id"], seller_id], offer["id"]
            )
            await self.chats.append_message(chat["id"], seller_id, MessageType.TEXT, ACCEPTED_CHAT_TEXT)

        await notifications.notify_safely(
            notifications.send_offer_status_notification(
                self.notifier, offer["buyer_id"], new_status, item_name, offer["id"]
            ),
            offer["buyer_id"],
        )
        return updated

    async def resolve_on_sale(self, listing: dict, buyer_id: str) -> dict:
        """
        Settle every offer on ``listing`` once it is sold to ``buyer_id``.

        The buyer's accepted offer becomes ``sold``; every other pending or
        accepted offer becomes ``rejected`` and its buyer hears about it once.
        """
        listing_id = listing["id"]
        seller_id = listing.get("seller_id")
        if buyer_id == seller_id:
            raise ValidationError("A listing cannot be sold to its seller")

        offers = await self.store.find_offers_for_listing(listing_id)

        winner = next(
            (o for o in offers if o["buyer_id"] == buyer_id and o["status"] == OfferStatus.ACCEPTED.value),
            None,
        )
        sold_offer = None
        if winner:
            sold_offer = await self.store.update_offer_status(
                winner["id"], OfferStatus.SOLD.value, [OfferStatus.ACCEPTED.value]
            )
            if sold_offer:
                logger.info("Offer %s marked sold", winner["id"])

        rejected_ids = []
        losing_buyers = []
        for offer in offers:
            if winner and offer["id"] == winner["id"]:
                continue
            if offer["status"] not in OPEN_STATUSES:
                continue
            rejected = await self.store.update_offer_status(
                offer["id"], OfferStatus.REJECTED.value, OPEN_STATUSES
            )
            if not rejected:
                continue
            rejected_ids.append(offer["id"])
            if offer["buyer_id"] != buyer_id and offer["buyer_id"] not in losing_buyers:
                losing_buyers.append(offer["buyer_id"])

        wishlisted_by = await self.store.get_users_who_wishlisted(listing_id)

        # A replayed sale finds the winner already sold; nobody hears about it twice
        replayed = sold_offer is None and any(
            o["buyer_id"] == buyer_id and o["status"] == OfferStatus.SOLD.value for o in offers
        )
        sends = []
        if not replayed:
            sends.append((buyer_id, notifications.send_item_sold_notification(self.notifier, buyer_id, listing)))
        sends += [
            (loser, notifications.send_item_sold_to_other_notification(self.notifier, loser, listing))
            for loser in losing_buyers
        ]
        already_told = {buyer_id, seller_id, *losing_buyers}
        for user_id in ([] if replayed else wishlisted_by):
            if user_id not in already_told:
                already_told.add(user_id)
                sends.append((user_id, notifications.send_item_sold_to_wishlist_notification(
                    self.notifier, user_id, listing
                )))
        notified = await notifications.fan_out(sends)

        if not replayed:
            try:
                chat = await self.chats.ensure_chat(listing_id, [seller_id, buyer_id])
                await self.chats.append_message(chat["id"], seller_id, MessageType.ITEM_SOLD, ITEM_SOLD_CHAT_TEXT)
            except Exception:
                logger.exception("Could not post sale message for listing %s", listing_id)

        return {
            "sold_offer_id": sold_offer["id"] if sold_offer else None,
            "rejected_offer_ids": rejected_ids,
            "notified": notified,
        }

    async def list_for_buyer(self, buyer_id: str) -> List[dict]:
        return await self.store.find_offers_by_buyer(buyer_id)

    async def list_for_listing(self, listing_id: str, acting_user_id: str) -> List[dict]:
        listing = await self.store.get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing not found")
        if listing.get("seller_id") != acting_user_id:
            raise Unauthorized()
        return await self.store.find_offers_for_listing(listing_id)
