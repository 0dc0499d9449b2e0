from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from enum import Enum

class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    OFFER = "offer"
    ITEM_SOLD = "item_sold"
    SCHEDULE = "schedule"
    SCHEDULE_ACCEPTANCE = "schedule_acceptance"
    SCHEDULE_REJECTION = "schedule_rejection"
    SCHEDULE_CANCELLATION = "schedule_cancellation"

class ScheduleData(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None

class ChatCreate(BaseModel):
    other_user_id: str
    listing_id: str
    offer_id: Optional[str] = None

class MessageCreate(BaseModel):
    text: Optional[str] = Field(None, max_length=2000, description="Message must be 2000 characters or less")
    image: Optional[str] = None
    type: MessageType = MessageType.TEXT
    schedule: Optional[ScheduleData] = None

class LastMessage(BaseModel):
    text: str
    created_at: datetime

class ChatResponse(BaseModel):
    id: str
    participants: List[str]
    listing_id: str
    offer_id: Optional[str] = None
    last_message: Optional[LastMessage] = None
    created_at: datetime
    updated_at: datetime

class MessageResponse(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    message_type: MessageType
    schedule_data: Optional[ScheduleData] = None
    created_at: datetime
