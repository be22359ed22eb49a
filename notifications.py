"""In-app notifications stored per recipient."""
import logging
from typing import Any, Dict, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, utcnow
from errors import ForbiddenError
from schemas import Notification
from stores import find_or_404

logger = logging.getLogger(__name__)


def notify(
    db: Database,
    recipient_id: str,
    type: str,
    title: str,
    message: str,
    related_order_id: Optional[str] = None,
) -> str:
    note = Notification(
        recipient_id=recipient_id,
        type=type,
        title=title,
        message=message,
        related_order_id=related_order_id,
    )
    notification_id = create_document(db, "notification", note)
    logger.debug("Notification %s (%s) queued for %s", notification_id, type, recipient_id)
    return notification_id


def list_notifications(db: Database, user_id: str, is_read: Optional[bool] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    query: Dict[str, Any] = {"recipient_id": user_id}
    if is_read is not None:
        query["is_read"] = is_read
    skip = (max(page, 1) - 1) * limit
    items = list(db["notification"].find(query).sort("created_at", DESCENDING).skip(skip).limit(limit))
    total = db["notification"].count_documents(query)
    unread = db["notification"].count_documents({"recipient_id": user_id, "is_read": False})
    return {"items": items, "total": total, "unread_count": unread}


def _owned(db: Database, notification_id: str, user_id: str) -> Dict[str, Any]:
    note = find_or_404(db, "notification", notification_id, "Notification")
    if note["recipient_id"] != user_id:
        raise ForbiddenError("Not authorized")
    return note


def mark_read(db: Database, notification_id: str, user_id: str) -> Dict[str, Any]:
    note = _owned(db, notification_id, user_id)
    now = utcnow()
    db["notification"].update_one({"_id": note["_id"]}, {"$set": {"is_read": True, "read_at": now, "updated_at": now}})
    note.update(is_read=True, read_at=now)
    return note


def mark_all_read(db: Database, user_id: str) -> int:
    now = utcnow()
    result = db["notification"].update_many(
        {"recipient_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": now, "updated_at": now}},
    )
    return result.modified_count


def delete_notification(db: Database, notification_id: str, user_id: str):
    note = _owned(db, notification_id, user_id)
    db["notification"].delete_one({"_id": note["_id"]})
