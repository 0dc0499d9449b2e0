from fastapi import APIRouter, Depends, HTTPException
from typing import List

from passr.dependencies import get_entity_store, get_offer_service
from passr.models.offer import OfferCreate, OfferResponse, OfferStatusUpdate
from passr.services.offer_service import OfferService
from passr.utils.auth import TokenUser, get_current_user

router = APIRouter(prefix="/offers", tags=["Offers"])

async def _with_names(store, offers: List[dict]) -> List[dict]:
    """Hydrate buyer/seller display names for the UI."""
    user_ids = {o.get("buyer_id") for o in offers} | {o.get("seller_id") for o in offers}
    users = {uid: await store.get_user(uid) for uid in user_ids if uid}
    for offer in offers:
        offer["buyer_name"] = (users.get(offer.get("buyer_id")) or {}).get("name") or "Buyer"
        offer["seller_name"] = (users.get(offer.get("seller_id")) or {}).get("name") or "Unknown Seller"
    return offers

@router.post("/", response_model=OfferResponse, status_code=201)
async def create_offer(
    data: OfferCreate,
    user: TokenUser = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    return await offers.create(
        user.id, data.items, data.total_offer_amount, message=data.message, seller_id=data.seller_id
    )

@router.get("/my-offers", response_model=List[OfferResponse])
async def get_my_offers(
    user: TokenUser = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
    store=Depends(get_entity_store),
):
    return await _with_names(store, await offers.list_for_buyer(user.id))

@router.get("/listing/{listing_id}", response_model=List[OfferResponse])
async def get_listing_offers(
    listing_id: str,
    user: TokenUser = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
    store=Depends(get_entity_store),
):
    return await _with_names(store, await offers.list_for_listing(listing_id, user.id))

@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(
    offer_id: str,
    user: TokenUser = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
    store=Depends(get_entity_store),
):
    offer = await offers.get_offer(offer_id)
    offer["seller_id"] = await offers.resolve_seller_id(offer)
    if user.id not in (offer.get("buyer_id"), offer.get("seller_id")):
        raise HTTPException(status_code=403, detail="Unauthorized")
    return (await _with_names(store, [offer]))[0]

@router.put("/{offer_id}/status", response_model=OfferResponse)
async def update_offer_status(
    offer_id: str,
    data: OfferStatusUpdate,
    user: TokenUser = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    return await offers.set_status(offer_id, data.status, user.id)
