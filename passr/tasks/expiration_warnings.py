import logging
from datetime import datetime, timezone
from typing import Optional

from passr.config import WARNING_WINDOW_START_HOURS, WARNING_WINDOW_END_HOURS
from passr.dependencies import get_entity_store, get_notifier
from passr.services import notifications

logger = logging.getLogger(__name__)


def hours_left(listing: dict, now: datetime) -> int:
    expires_at = listing["expires_at"]
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return max(0, round((expires_at - now).total_seconds() / 3600))


class ExpirationWarningDispatcher:
    """
    Warns sellers and wishlisting users before a listing expires.

    The lookahead window ``[now + start_hours, now + end_hours)`` is as wide as
    the dispatch interval, so an hourly run sees each listing exactly once.
    """

    def __init__(self, store, notifier,
                 start_hours: float = WARNING_WINDOW_START_HOURS,
                 end_hours: float = WARNING_WINDOW_END_HOURS):
        self.store = store
        self.notifier = notifier
        self.start_hours = start_hours
        self.end_hours = end_hours

    async def warn_listing(self, listing: dict, now: datetime) -> int:
        seller_id = listing.get("seller_id")
        left = hours_left(listing, now)

        sent = 0
        if seller_id:
            sent += await notifications.fan_out([
                (seller_id, notifications.send_expiration_warning_to_seller(self.notifier, seller_id, listing, left)),
            ])

        wishlisted_by = await self.store.get_users_who_wishlisted(listing["id"])
        recipients = [uid for uid in dict.fromkeys(wishlisted_by) if uid != seller_id]
        sent += await notifications.fan_out(
            (uid, notifications.send_expiration_warning_to_wishlist(self.notifier, uid, listing, left))
            for uid in recipients
        )
        return sent

    async def dispatch(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        listings = await self.store.find_listings_expiring_in_window(self.start_hours, self.end_hours, now)
        if not listings:
            logger.debug("No listings entering the expiration warning window")
            return 0

        sent = 0
        for listing in listings:
            try:
                sent += await self.warn_listing(listing, now)
            except Exception as e:
                logger.error("Could not send expiration warnings for listing %s: %s", listing.get("id"), e)

        logger.info("⏳ Sent %d expiration warnings for %d listings", sent, len(listings))
        return sent


def window_fits_ttl(ttl_hours: float, start_hours: float, end_hours: float) -> bool:
    """True when every listing passes through the whole window before it expires."""
    return 0 <= start_hours < end_hours <= ttl_hours


async def run_expiration_warnings():
    """Scheduler entry point. Never raises, so a bad tick can't kill the job."""
    try:
        store = get_entity_store()
        await ExpirationWarningDispatcher(store, get_notifier(store)).dispatch()
    except Exception:
        logger.exception("Expiration warning tick failed")
