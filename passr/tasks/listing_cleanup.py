"""
Expired listing cleanup.

Every tick removes listings whose ``expires_at`` has passed, together with
everything that points at them: offers, chats (and their messages) and the
listing's images in Cloudinary. Each step is isolated, so a failing step is
logged and the remaining steps still run. If deleting offers or chats fails,
the listing itself is kept so the next tick finds it and retries the whole
cascade; every step is idempotent. A listing that disappeared in the
meantime (concurrent tick, owner deletion) is simply a no-op.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from passr.dependencies import get_entity_store, get_object_store
from passr.errors import NotFoundError
from passr.utils.cloudinary import parse_image_key

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    listing_id: str
    image_keys: List[str] = field(default_factory=list)
    offers_deleted: int = 0
    chats_deleted: int = 0
    listing_deleted: bool = False
    failed_steps: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_steps


def collect_image_keys(listing: dict) -> List[str]:
    """Storage keys of every image on the listing; unparseable references are skipped."""
    references = list(listing.get("images") or [])
    if listing.get("cover_image"):
        references.append(listing["cover_image"])

    keys = []
    for reference in references:
        try:
            key = parse_image_key(reference)
        except ValueError as e:
            logger.warning("Skipping image on listing %s: %s", listing.get("id"), e)
            continue
        if key not in keys:
            keys.append(key)
    return keys


def _listing_outcome(report: CleanupReport) -> str:
    if report.listing_deleted:
        return "deleted"
    if {"offers", "chats"} & set(report.failed_steps):
        return "kept for retry"
    return "already gone"


class ListingCleanup:
    def __init__(self, store, object_store):
        self.store = store
        self.object_store = object_store

    async def _step(self, name: str, report: CleanupReport, operation):
        try:
            return await operation
        except NotFoundError:
            logger.debug("Listing %s: %s found nothing to delete", report.listing_id, name)
        except Exception as e:
            logger.error("Listing %s: cleanup step '%s' failed: %s", report.listing_id, name, e)
            report.failed_steps.append(name)
        return None

    async def cleanup(self, listing: dict) -> CleanupReport:
        listing_id = str(listing["id"])
        report = CleanupReport(listing_id=listing_id)

        report.image_keys = collect_image_keys(listing)

        # Dependents go before the listing so readers never see a dangling reference
        offers_deleted, chats_deleted = await asyncio.gather(
            self._step("offers", report, self.store.delete_offers_for_listing(listing_id)),
            self._step("chats", report, self.store.delete_chats_for_listing(listing_id)),
        )
        report.offers_deleted = offers_deleted or 0
        report.chats_deleted = chats_deleted or 0

        # The listing anchors the next tick's retry, so it stays until its dependents are gone
        if report.failed_steps:
            logger.warning(
                "Listing %s kept for retry: %s failed", listing_id, ", ".join(report.failed_steps)
            )
        else:
            report.listing_deleted = bool(
                await self._step("listing", report, self.store.delete_listing(listing_id))
            )

        if report.image_keys:
            await self._step("images", report, self.object_store.delete_objects(report.image_keys))

        logger.info(
            "🧼 Cleaned up listing %s: %d offers, %d chats, %d images, listing %s",
            listing_id,
            report.offers_deleted,
            report.chats_deleted,
            len(report.image_keys),
            _listing_outcome(report),
        )
        return report


async def cleanup_expired_listings(store, object_store, now: Optional[datetime] = None) -> List[CleanupReport]:
    """One scanner tick: find every expired listing and cascade its removal."""
    now = now or datetime.now(timezone.utc)
    expired = await store.find_expired_listings(now)
    if not expired:
        logger.debug("No expired listings")
        return []

    logger.info("🔁 Found %d expired listings, cleaning up", len(expired))
    engine = ListingCleanup(store, object_store)
    results = await asyncio.gather(*(engine.cleanup(listing) for listing in expired), return_exceptions=True)

    reports = []
    for listing, result in zip(expired, results):
        if isinstance(result, Exception):
            logger.error("❌ Error cleaning up listing %s: %s", listing.get("id"), result)
            continue
        reports.append(result)
    return reports


async def run_expired_listing_cleanup():
    """Scheduler entry point. Never raises, so a bad tick can't kill the job."""
    try:
        await cleanup_expired_listings(get_entity_store(), get_object_store())
    except Exception:
        logger.exception("Expired listing cleanup tick failed")
