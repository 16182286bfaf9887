from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from firebase_admin import firestore

from .auth import get_current_user
from .database import db
from .models import CitySubscription, Notification, NotificationListResponse, NotificationType
from .settings import settings
from .utils import to_isoformat, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def create_notification(
    user_id: str,
    title: str,
    message: str,
    type: NotificationType | str = NotificationType.GENERAL,
) -> str:
    """Store an unread notification for a user and return its id."""
    kind = type.value if isinstance(type, NotificationType) else str(type)
    ref = db.collection("notifications").document()
    ref.set({
        "userId": user_id,
        "title": title,
        "message": message,
        "type": kind,
        "isRead": False,
        # Real timestamp so listings can sort without a server round-trip.
        "createdAt": utcnow(),
    })
    return ref.id


def notify_safely(user_id: str, title: str, message: str, type: NotificationType | str) -> None:
    """Notification side-effect of another action; failures are only logged."""
    try:
        create_notification(user_id, title, message, type)
    except Exception as e:
        logger.warning("Notification for %s failed: %s", user_id, e)


def _sort_key(item: Dict[str, Any]) -> str:
    return to_isoformat(item.get("createdAt")) or ""


def list_user_notifications(user_id: str, limit: int = 20) -> List[Notification]:
    snaps = db.collection("notifications").where("userId", "==", user_id).stream()
    items = []
    for snap in snaps:
        data = snap.to_dict() or {}
        data["id"] = snap.id
        items.append(data)
    items.sort(key=_sort_key, reverse=True)
    return [
        Notification(
            id=d["id"],
            title=d.get("title") or "",
            message=d.get("message") or "",
            type=d.get("type") or NotificationType.GENERAL.value,
            isRead=bool(d.get("isRead")),
            createdAt=to_isoformat(d.get("createdAt")),
        )
        for d in items[: max(1, int(limit))]
    ]


_BROADCAST_ROLES = {"companies": "company", "drivers": "driver"}


def broadcast_notification(
    title: str,
    message: str,
    target: str = "all",
    user_ids: Optional[List[str]] = None,
) -> Dict[str, int]:
    """Send a system notification to every user, one role, or an explicit id list."""
    if user_ids:
        recipients = list(dict.fromkeys(user_ids))
    else:
        query = db.collection("users")
        if target in _BROADCAST_ROLES:
            query = query.where("role", "==", _BROADCAST_ROLES[target])
        recipients = [snap.id for snap in query.stream()]

    sent = failed = 0
    for uid in recipients:
        try:
            create_notification(uid, title, message, NotificationType.SYSTEM_UPDATE)
            sent += 1
        except Exception as e:
            logger.warning("System notification for %s failed: %s", uid, e)
            failed += 1
    return {"sent": sent, "failed": failed}


def delete_old_notifications(
    days: int = 30,
    user_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Delete notifications created more than `days` ago; returns how many were removed."""
    cutoff = (now or utcnow()) - timedelta(days=days)
    query = db.collection("notifications").where("createdAt", "<", cutoff)
    if user_id:
        query = query.where("userId", "==", user_id)
    deleted = 0
    for snap in query.stream():
        db.collection("notifications").document(snap.id).delete()
        deleted += 1
    return deleted


def delete_old_notifications_job() -> None:
    try:
        deleted = delete_old_notifications(settings.NOTIFICATION_RETENTION_DAYS)
        if deleted:
            logger.info("Removed %s old notification(s)", deleted)
    except Exception as e:
        logger.error("Notification cleanup job failed: %s", e)


@router.get("", response_model=NotificationListResponse)
def get_notifications(limit: int = 20, user: Dict[str, Any] = Depends(get_current_user)):
    items = list_user_notifications(user["uid"], limit=limit)
    return NotificationListResponse(notifications=items, unreadCount=sum(1 for n in items if not n.isRead))


@router.post("/{notification_id}/read")
def mark_notification_read(notification_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ref = db.collection("notifications").document(notification_id)
    snap = ref.get()
    if not snap.exists:
        raise HTTPException(status_code=404, detail="Notificação não encontrada.")
    if (snap.to_dict() or {}).get("userId") != user["uid"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    ref.update({"isRead": True})
    return {"id": notification_id, "isRead": True}


@router.post("/read-all")
def mark_all_read(user: Dict[str, Any] = Depends(get_current_user)):
    updated = 0
    for snap in db.collection("notifications").where("userId", "==", user["uid"]).stream():
        if not (snap.to_dict() or {}).get("isRead"):
            db.collection("notifications").document(snap.id).update({"isRead": True})
            updated += 1
    return {"updated": updated}


def _city_settings_ref(uid: str):
    return db.collection("users").document(uid).collection("notification_settings").document("cities")


@router.get("/settings/cities", response_model=CitySubscription)
def get_city_subscriptions(user: Dict[str, Any] = Depends(get_current_user)):
    snap = _city_settings_ref(user["uid"]).get()
    data = snap.to_dict() if snap.exists else {}
    return CitySubscription(cities=list((data or {}).get("cities") or []))


@router.put("/settings/cities", response_model=CitySubscription)
def set_city_subscriptions(payload: CitySubscription, user: Dict[str, Any] = Depends(get_current_user)):
    # De-duplicate while keeping the user's order.
    cities = list(dict.fromkeys(c.strip() for c in payload.cities if c and c.strip()))
    _city_settings_ref(user["uid"]).set({"cities": cities, "updatedAt": firestore.SERVER_TIMESTAMP})
    return CitySubscription(cities=cities)
