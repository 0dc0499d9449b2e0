from fastapi import APIRouter, Depends, HTTPException

from passr.dependencies import get_entity_store
from passr.utils.auth import TokenUser, get_current_user


router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("/")
async def get_notifications(user: TokenUser = Depends(get_current_user), store=Depends(get_entity_store)):
    """Fetch the logged-in user's notification inbox, newest first."""
    return {"notifications": await store.find_notifications(user.id)}

@router.patch("/read-all", response_model=dict)
async def mark_all_as_read(user: TokenUser = Depends(get_current_user), store=Depends(get_entity_store)):
    updated = await store.mark_all_notifications_read(user.id)
    return {"message": "All notifications marked as read", "updated": updated}

@router.patch("/{notification_id}/read", response_model=dict)
async def mark_notification_as_read(
    notification_id: str,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
):
    if not await store.mark_notification_read(notification_id, user.id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}

@router.delete("/{notification_id}", response_model=dict)
async def delete_notification(
    notification_id: str,
    user: TokenUser = Depends(get_current_user),
    store=Depends(get_entity_store),
):
    if not await store.delete_notification(notification_id, user.id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification deleted"}
