import logging
from datetime import datetime, timezone
from typing import List, Optional

from passr.errors import NotFoundError, Unauthorized, ValidationError
from passr.models.message import MessageType

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 50

SCHEDULE_SUMMARIES = {
    MessageType.SCHEDULE: "📅 Pickup Scheduled",
    MessageType.SCHEDULE_ACCEPTANCE: "✅ Pickup Confirmed",
    MessageType.SCHEDULE_REJECTION: "❌ Pickup Declined",
    MessageType.SCHEDULE_CANCELLATION: "🚫 Pickup Cancelled",
}

IMAGE_SUMMARY = "Sent an image"

# Types whose meaning is carried by the type itself, so empty content is fine
CONTENT_OPTIONAL_TYPES = set(SCHEDULE_SUMMARIES) | {MessageType.ITEM_SOLD}


def summarize_message(message_type, content: Optional[str], image: Optional[str] = None) -> str:
    """Text shown as a chat's last message; a pure function of the message."""
    message_type = MessageType(message_type)
    if message_type in SCHEDULE_SUMMARIES:
        return SCHEDULE_SUMMARIES[message_type]
    if not content and image:
        return IMAGE_SUMMARY

    text = content or ""
    if len(text) > SUMMARY_MAX_LENGTH:
        return text[:SUMMARY_MAX_LENGTH - 3] + "..."
    return text


class ChatService:
    def __init__(self, store):
        self.store = store

    async def ensure_chat(self, listing_id: str, participants: List[str],
                          offer_id: Optional[str] = None) -> dict:
        """Get or create the chat for a listing and an unordered pair of users."""
        unique = {str(p) for p in participants if p}
        if len(participants) != 2 or len(unique) != 2:
            raise ValidationError("A chat needs exactly two distinct participants")
        if not listing_id:
            raise ValidationError("A chat must be anchored to a listing")

        return await self.store.get_or_create_chat(str(listing_id), [str(p) for p in participants], offer_id)

    async def append_message(self, chat_id: str, sender_id: str, message_type="text",
                             content: Optional[str] = None, image: Optional[str] = None,
                             schedule: Optional[dict] = None) -> dict:
        try:
            message_type = MessageType(message_type)
        except ValueError:
            raise ValidationError(f"Unknown message type: {message_type}")

        if not content and not image and message_type not in CONTENT_OPTIONAL_TYPES:
            raise ValidationError("A message needs text or an image")

        chat = await self.store.get_chat(chat_id)
        if not chat:
            raise NotFoundError("Chat not found")

        now = datetime.now(timezone.utc)
        message = await self.store.insert_message({
            "chat_id": chat["id"],
            "listing_id": chat["listing_id"],
            "sender_id": sender_id,
            "content": content,
            "image_url": image,
            "message_type": message_type.value,
            "schedule_data": schedule,
            "created_at": now,
        })

        summary = {"text": summarize_message(message_type, content, image), "created_at": now}
        if not await self.store.update_chat_summary(chat["id"], summary):
            logger.debug("Chat %s already has a newer last message", chat["id"])

        return message

    async def get_chat_for_participant(self, chat_id: str, user_id: str) -> dict:
        chat = await self.store.get_chat(chat_id)
        if not chat:
            raise NotFoundError("Chat not found")
        if user_id not in chat.get("participants", []):
            raise Unauthorized()
        return chat

    async def list_chats(self, user_id: str) -> List[dict]:
        return await self.store.find_chats_for_user(user_id)

    async def get_messages(self, chat_id: str) -> List[dict]:
        return await self.store.find_messages(chat_id)
