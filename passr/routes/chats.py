from fastapi import APIRouter, Depends
from typing import List

from passr.dependencies import get_chat_service, get_entity_store, get_notifier
from passr.errors import ValidationError
from passr.models.message import ChatCreate, ChatResponse, MessageCreate, MessageResponse, MessageType
from passr.services import notifications
from passr.services.chat_service import ChatService
from passr.utils.auth import TokenUser, get_current_user
from passr.utils.cloudinary import get_optimized_image_url

router = APIRouter(prefix="/chats", tags=["Chats"])

# offer and item_sold messages are written by the offer engine only
CLIENT_MESSAGE_TYPES = {
    MessageType.TEXT,
    MessageType.IMAGE,
    MessageType.SCHEDULE,
    MessageType.SCHEDULE_ACCEPTANCE,
    MessageType.SCHEDULE_REJECTION,
    MessageType.SCHEDULE_CANCELLATION,
}

@router.post("/", response_model=ChatResponse, status_code=201)
async def create_chat(
    data: ChatCreate,
    user: TokenUser = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
):
    return await chats.ensure_chat(data.listing_id, [user.id, data.other_user_id], data.offer_id)

@router.get("/", response_model=List[dict])
async def get_chats(
    user: TokenUser = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
    store=Depends(get_entity_store),
):
    user_chats = await chats.list_chats(user.id)

    enriched = []
    for chat in user_chats:
        other_id = next((p for p in chat["participants"] if p != user.id), None)
        other_user = await store.get_user(other_id) if other_id else None
        listing = await store.get_listing(chat["listing_id"])

        chat["other_user"] = {
            "id": other_id,
            "name": other_user.get("name") if other_user else "Unknown User",
            "avatar": other_user.get("avatar") if other_user else None,
        }
        chat["listing"] = {
            "id": listing["id"],
            "title": listing.get("title"),
            "image": get_optimized_image_url((listing.get("images") or [None])[0]),
        } if listing else None
        enriched.append(chat)

    return enriched

@router.get("/{chat_id}/messages", response_model=List[MessageResponse])
async def get_messages(
    chat_id: str,
    user: TokenUser = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
):
    chat = await chats.get_chat_for_participant(chat_id, user.id)
    return await chats.get_messages(chat["id"])

@router.post("/{chat_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    chat_id: str,
    data: MessageCreate,
    user: TokenUser = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
    store=Depends(get_entity_store),
    notifier=Depends(get_notifier),
):
    if data.type not in CLIENT_MESSAGE_TYPES:
        raise ValidationError(f"Cannot send {data.type.value} messages")

    chat = await chats.get_chat_for_participant(chat_id, user.id)
    schedule = data.schedule.model_dump() if data.schedule else None

    message = await chats.append_message(
        chat["id"], user.id, data.type, data.text, image=data.image, schedule=schedule
    )

    recipient_id = next((p for p in chat["participants"] if p != user.id), None)
    if recipient_id:
        sender = await store.get_user(user.id)
        listing = await store.get_listing(chat["listing_id"])
        await notifications.notify_safely(
            notifications.send_chat_message_notification(
                notifier,
                recipient_id,
                (sender or {}).get("name") or user.name or "User",
                data.text,
                data.type.value,
                chat,
                listing,
                schedule,
            ),
            recipient_id,
        )

    return message
