from fastapi import APIRouter, Depends, HTTPException
from datetime import datetime, timedelta, timezone
import logging

from passr.config import LISTING_TTL_HOURS
from passr.dependencies import get_entity_store, get_notifier, get_object_store, get_offer_service
from passr.errors import DependencyError
from passr.models.listing import ListingCreate, ListingUpdate, ListingResponse
from passr.services import notifications
from passr.services.offer_service import OfferService
from passr.tasks.listing_cleanup import ListingCleanup
from passr.utils.auth import TokenUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listings", tags=["Listings"])

async def _get_owned_listing(store, listing_id: str, user: TokenUser) -> dict:
    listing = await store.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.get("seller_id") != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return listing

@router.post("/", response_model=ListingResponse, status_code=201)
async def create_listing(
    data: ListingCreate,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
):
    now = datetime.now(timezone.utc)
    doc = data.model_dump()
    doc["cover_image"] = doc.get("cover_image") or (doc["images"][0] if doc["images"] else None)
    doc.update({
        "seller_id": user.id,
        "posted_at": now,
        "expires_at": now + timedelta(hours=LISTING_TTL_HOURS),
        "sold": False,
        "status": "active",
        "created_at": now,
        "updated_at": now,
    })

    listing = await store.insert_listing(doc)
    logger.info("Created listing %s for %s", listing["id"], user.id)
    return listing

@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing_by_id(listing_id: str, store=Depends(get_entity_store)):
    listing = await store.get_listing(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing

@router.put("/{listing_id}", response_model=ListingResponse)
async def update_listing(
    listing_id: str,
    update_data: ListingUpdate,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
    notifier=Depends(get_notifier),
    offers: OfferService = Depends(get_offer_service),
):
    listing = await _get_owned_listing(store, listing_id, user)

    updates = update_data.model_dump(exclude_unset=True)
    # Sale fields only change through the one-way sale transition below
    selling = bool(updates.pop("sold", None))
    buyer_id = updates.pop("sold_to_user_id", None)
    if selling and buyer_id == user.id:
        raise HTTPException(status_code=400, detail="You can't sell a listing to yourself")

    now = datetime.now(timezone.utc)
    updates["updated_at"] = now

    if selling:
        updated = await store.mark_listing_sold(listing_id, buyer_id, updates, now)
        if not updated:
            if not await store.get_listing(listing_id):
                raise HTTPException(status_code=404, detail="Listing not found")
            raise HTTPException(status_code=400, detail="Listing is already sold")
    else:
        updated = await store.update_listing(listing_id, updates)
        if not updated:
            raise HTTPException(status_code=404, detail="Listing not found")

    old_price = listing.get("price")
    new_price = updates.get("price")
    if new_price is not None and old_price is not None and new_price < old_price and not updated.get("sold"):
        wishlisted_by = await store.get_users_who_wishlisted(listing_id)
        await notifications.fan_out(
            (uid, notifications.send_price_drop_notification(notifier, uid, updated, old_price, new_price))
            for uid in wishlisted_by if uid != user.id
        )

    if selling and buyer_id:
        result = await offers.resolve_on_sale(updated, buyer_id)
        logger.info(
            "Listing %s sold to %s: offer %s sold, %d offers rejected",
            listing_id, buyer_id, result["sold_offer_id"], len(result["rejected_offer_ids"]),
        )

    return updated

@router.delete("/{listing_id}")
async def delete_listing(
    listing_id: str,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
    object_store=Depends(get_object_store),
):
    listing = await _get_owned_listing(store, listing_id, user)

    report = await ListingCleanup(store, object_store).cleanup(listing)
    if not report.listing_deleted and report.failed_steps:
        raise DependencyError("Could not remove everything attached to this listing, try again")

    return {
        "message": "Listing deleted successfully 🗑️",
        "deleted_offer_count": report.offers_deleted,
        "deleted_chat_count": report.chats_deleted,
        "deleted_image_count": len(report.image_keys),
    }

@router.patch("/{listing_id}/expire", response_model=dict)
async def expire_listing(
    listing_id: str,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
):
    """Push expires_at one second into the past so the next cleanup tick removes the listing."""
    await _get_owned_listing(store, listing_id, user)

    now = datetime.now(timezone.utc)
    await store.update_listing(listing_id, {"expires_at": now - timedelta(seconds=1), "updated_at": now})

    return {"message": "Listing expired successfully. Cleanup job will remove it shortly."}
