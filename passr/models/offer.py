from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from enum import Enum

class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SOLD = "sold"

class OfferItem(BaseModel):
    id: str = Field(..., description="Listing id this line item refers to")
    title: Optional[str] = None
    price: float = 0.0

class OfferCreate(BaseModel):
    items: List[OfferItem] = Field(default_factory=list)
    total_offer_amount: Optional[float] = None
    message: Optional[str] = Field(None, max_length=500)
    seller_id: Optional[str] = None

class OfferStatusUpdate(BaseModel):
    status: OfferStatus

class OfferResponse(BaseModel):
    id: str
    buyer_id: str
    seller_id: Optional[str] = None
    items: List[OfferItem]
    total_offer_amount: float
    message: Optional[str] = None
    status: OfferStatus
    created_at: datetime
    updated_at: datetime
    buyer_name: Optional[str] = None
    seller_name: Optional[str] = None
