from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

class ListingCreate(BaseModel):
    title: str = Field(..., max_length=120)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: str
    brand: Optional[str] = None
    condition: Optional[str] = None
    living_community: Optional[str] = None
    urgent: bool = False
    images: List[str] = Field(default_factory=list)
    cover_image: Optional[str] = None

class ListingUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[str] = None
    living_community: Optional[str] = None
    urgent: Optional[bool] = None
    images: Optional[List[str]] = None
    cover_image: Optional[str] = None
    sold: Optional[bool] = None
    sold_to_user_id: Optional[str] = None

class ListingResponse(BaseModel):
    id: str
    seller_id: str
    title: str
    description: Optional[str] = None
    price: float
    category: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[str] = None
    living_community: Optional[str] = None
    urgent: bool = False
    images: List[str] = Field(default_factory=list)
    cover_image: Optional[str] = None
    status: str = "active"
    sold: bool = False
    sold_to_user_id: Optional[str] = None
    posted_at: datetime
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
