from fastapi import Depends

from passr.database import db
from passr.services.chat_service import ChatService
from passr.services.notifications import PushNotifier
from passr.services.offer_service import OfferService
from passr.store.entity_store import MongoEntityStore
from passr.utils.cloudinary import CloudinaryObjectStore


def get_entity_store() -> MongoEntityStore:
    return MongoEntityStore(db)


def get_object_store() -> CloudinaryObjectStore:
    return CloudinaryObjectStore()


def get_notifier(store=Depends(get_entity_store)) -> PushNotifier:
    return PushNotifier(store)


def get_chat_service(store=Depends(get_entity_store)) -> ChatService:
    return ChatService(store)


def get_offer_service(
    store=Depends(get_entity_store),
    chats: ChatService = Depends(get_chat_service),
    notifier=Depends(get_notifier),
) -> OfferService:
    return OfferService(store, chats, notifier)
