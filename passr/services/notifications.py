"""
Push notifications and the in-app notification inbox.

``PushNotifier.notify`` is the single delivery primitive: it records the
notification in the user's inbox and, when the user registered an Expo push
token, forwards it to the Expo push service. The ``send_*`` helpers below
build the title, body and payload for each marketplace event. Every payload
carries a ``type`` discriminator and a client deep-link ``url``.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Iterable, Optional

import httpx

from passr.config import EXPO_PUSH_URL
from passr.errors import DependencyError
from passr.utils.deep_links import ROUTES, create_deep_link

logger = logging.getLogger(__name__)

EXPO_TOKEN_PATTERN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")


def is_expo_push_token(token) -> bool:
    return isinstance(token, str) and bool(EXPO_TOKEN_PATTERN.match(token))


class PushNotifier:
    def __init__(self, store, http_client: Optional[httpx.AsyncClient] = None,
                 push_url: str = EXPO_PUSH_URL, timeout: float = 10.0):
        self.store = store
        self.http_client = http_client
        self.push_url = push_url
        self.timeout = timeout

    async def notify(self, user_id: str, title: str, body: str, payload: dict) -> None:
        payload = dict(payload)
        payload.setdefault("type", "system")
        payload.setdefault("url", "/")

        try:
            await self.store.insert_notification({
                "user_id": user_id,
                "type": payload["type"],
                "title": title,
                "message": body,
                "metadata": payload,
                "is_read": False,
                "created_at": datetime.now(timezone.utc),
            })
            user = await self.store.get_user(user_id)
        except Exception as e:
            raise DependencyError(f"Could not record notification for {user_id}: {e}") from e

        token = (user or {}).get("expo_push_token")
        if not is_expo_push_token(token):
            logger.info("[Push] User %s does not have a valid push token", user_id)
            return

        message = {"to": token, "sound": "default", "title": title, "body": body, "data": payload}
        try:
            await self._send([message])
        except httpx.HTTPError as e:
            raise DependencyError(f"Push delivery to {user_id} failed: {e}") from e
        logger.info("[Push] Sent notification to %s: %s", user_id, title)

    async def _send(self, messages: list) -> None:
        if self.http_client is not None:
            response = await self.http_client.post(self.push_url, json=messages, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.push_url, json=messages)
        response.raise_for_status()

        tickets = response.json().get("data", [])
        for ticket in tickets if isinstance(tickets, list) else [tickets]:
            if ticket.get("status") == "error":
                logger.warning("[Push] Expo rejected notification: %s", ticket.get("message"))


async def notify_safely(send: Awaitable, recipient_id: str) -> bool:
    """Await one send, logging instead of raising. Returns True if it went out."""
    try:
        await send
        return True
    except Exception as e:
        logger.error("[Push] Error notifying %s: %s", recipient_id, e)
        return False


async def fan_out(sends: Iterable[tuple]) -> int:
    """Run ``(recipient_id, awaitable)`` sends concurrently; one failure never blocks the rest."""
    sends = list(sends)
    if not sends:
        return 0
    results = await asyncio.gather(*(notify_safely(send, rid) for rid, send in sends))
    return sum(1 for ok in results if ok)


def _first_image(listing: Optional[dict]) -> Optional[str]:
    images = (listing or {}).get("images") or []
    return images[0] if images else (listing or {}).get("cover_image")


def _listing_card(listing: dict, price=None) -> dict:
    return {
        "id": listing.get("id"),
        "title": listing.get("title") or "Listing",
        "price": listing.get("price", 0) if price is None else price,
        "image": _first_image(listing),
        "sold": bool(listing.get("sold", False)),
    }


def _format_schedule(schedule: dict) -> str:
    date = datetime.fromisoformat(str(schedule["date"]).replace("Z", "+00:00"))
    time = datetime.fromisoformat(str(schedule["time"]).replace("Z", "+00:00"))
    date_str = date.strftime("%b %d, %Y").replace(" 0", " ")
    time_str = time.strftime("%I:%M %p").lstrip("0")
    location = schedule.get("location")
    return f"{date_str} at {time_str}" + (f" — {location}" if location else "")


async def send_offer_notification(notifier, seller_id: str, buyer_name: str, amount: float,
                                  item_name: str, listing: dict, offer_id: str):
    card = _listing_card(listing)
    payload = {
        "type": "offer",
        "listingId": listing.get("id"),
        "offerId": offer_id,
        "listingTitle": listing.get("title"),
        "listingPrice": listing.get("price"),
        "listingImage": card["image"],
        "url": create_deep_link(ROUTES["listing_offers"], {"listing": card}),
    }
    await notifier.notify(
        seller_id,
        "New Offer Received! 💰",
        f"{buyer_name} offered ${amount:.0f} for {item_name}",
        payload,
    )


async def send_offer_status_notification(notifier, recipient_id: str, status: str,
                                         item_name: str, offer_id: str):
    if status == "accepted":
        title = "Offer Accepted! 🎉"
        body = f"Your offer for {item_name} has been accepted! Tap to schedule pickup."
    elif status == "rejected":
        title = "Offer Declined"
        body = f"Your offer for {item_name} was declined."
    else:
        return

    payload = {
        "type": "offer_accepted" if status == "accepted" else "offer_rejected",
        "offerId": offer_id,
        "url": create_deep_link(ROUTES["listing_offers"]),
    }
    await notifier.notify(recipient_id, title, body, payload)


async def send_item_sold_notification(notifier, buyer_id: str, listing: dict):
    payload = {
        "type": "item_sold",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "listingImage": _first_image(listing),
        "url": create_deep_link(ROUTES["past_orders"]),
    }
    await notifier.notify(
        buyer_id,
        "You got the item! 🎉",
        f"You have officially purchased {listing.get('title')}.",
        payload,
    )


async def send_item_sold_to_other_notification(notifier, recipient_id: str, listing: dict):
    payload = {
        "type": "item_sold_other",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "listingImage": _first_image(listing),
        "url": create_deep_link(ROUTES["listing_offers"]),
    }
    await notifier.notify(
        recipient_id,
        "Item Sold",
        f"{listing.get('title') or 'Item'} has been sold to another buyer.",
        payload,
    )


async def send_item_sold_to_wishlist_notification(notifier, recipient_id: str, listing: dict):
    payload = {
        "type": "item_sold_wishlist",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "listingImage": _first_image(listing),
        "url": create_deep_link(ROUTES["product_details"], {"product": _listing_card(listing)}),
    }
    await notifier.notify(
        recipient_id,
        "Item Sold 🔔",
        f"An item in your wishlist ({listing.get('title')}) has been sold.",
        payload,
    )


async def send_price_drop_notification(notifier, recipient_id: str, listing: dict,
                                       old_price: float, new_price: float):
    card = _listing_card(listing, price=new_price)
    payload = {
        "type": "price_drop",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "listingImage": card["image"],
        "oldPrice": old_price,
        "newPrice": new_price,
        "url": create_deep_link(ROUTES["product_details"], {"product": card}),
    }
    await notifier.notify(
        recipient_id,
        "Price Drop Alert! 📉",
        f"{listing.get('title')} is now ${new_price:.0f} (was ${old_price:.0f})",
        payload,
    )


async def send_expiration_warning_to_seller(notifier, recipient_id: str, listing: dict, hours_left: int):
    payload = {
        "type": "expiration_warning_seller",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "url": create_deep_link(ROUTES["my_listings"]),
    }
    await notifier.notify(
        recipient_id,
        "Action Required: Listing Expiring ⏳",
        f'Your listing "{listing.get("title")}" will expire in {hours_left} hours. '
        "Renew it or lower the price to sell it faster!",
        payload,
    )


async def send_expiration_warning_to_wishlist(notifier, recipient_id: str, listing: dict, hours_left: int):
    payload = {
        "type": "expiration_warning_wishlist",
        "listingId": listing.get("id"),
        "listingTitle": listing.get("title"),
        "listingImage": _first_image(listing),
        "url": create_deep_link(ROUTES["product_details"], {"product": _listing_card(listing)}),
    }
    await notifier.notify(
        recipient_id,
        "Last Chance! ⏳",
        f"An item in your wishlist ({listing.get('title')}) is expiring in {hours_left} hours. Don't miss out!",
        payload,
    )


async def send_chat_message_notification(notifier, recipient_id: str, sender_name: str,
                                         message_text: Optional[str], message_type: str,
                                         chat: dict, listing: Optional[dict],
                                         schedule: Optional[dict] = None):
    is_recipient_seller = bool(listing) and recipient_id == listing.get("seller_id")
    url = create_deep_link(ROUTES["chat"], {
        "listingId": chat.get("listing_id"),
        "offerId": chat.get("offer_id") or "",
        "isSeller": is_recipient_seller,
    })

    title = "New message"
    notification_type = "message"
    if message_text:
        body = f'{sender_name}: "{message_text}"'
    elif message_type == "image":
        body = f"{sender_name} sent an image 📷"
    else:
        body = "New message"

    if message_type == "schedule":
        notification_type = "pickup_scheduled"
        title = "Pickup scheduled"
        try:
            body = _format_schedule(schedule) if schedule else "📅 Proposed a pickup time"
        except (KeyError, TypeError, ValueError):
            body = "📅 Proposed a pickup time"
    elif message_type == "schedule_acceptance":
        notification_type = "offer_accepted"
        title = "Pickup confirmed"
        body = "✅ Accepted pickup time"
    elif message_type == "schedule_rejection":
        notification_type = "offer_rejected"
        title = "Pickup declined"
        body = "❌ Declined pickup time"
    elif message_type == "schedule_cancellation":
        notification_type = "offer_rejected"
        title = "Pickup cancelled"
        body = "🚫 Cancelled pickup"

    payload = {
        "type": notification_type,
        "url": url,
        "chatId": chat.get("id"),
        "listingId": chat.get("listing_id"),
        "listingTitle": listing.get("title") if listing else "Listing",
        "listingImage": _first_image(listing),
        "productPrice": listing.get("price") if listing else 0,
        "createdAt": datetime.now(timezone.utc).isoformat(),
    }
    await notifier.notify(recipient_id, title, body, payload)
