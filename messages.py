"""
Buyer/seller messaging

A conversation holds exactly two participants and, optionally, the product it
is about. Unread counters live on the conversation (keyed by user id) and read
receipts on each message, so both are updated with single-document writes.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, utcnow
from errors import ForbiddenError, InvalidRequestError, NotFoundError
from schemas import Conversation, Message
from stores import AccountStore, find_or_404, to_object_id

logger = logging.getLogger(__name__)

DELETED_CONTENT = "This message was deleted"


def _participant_of(db: Database, conversation_id: str, user_id: str) -> Dict[str, Any]:
    conversation = find_or_404(db, "conversation", conversation_id, "Conversation")
    if user_id not in conversation["participants"]:
        raise ForbiddenError("Not authorized to access this conversation")
    return conversation


def get_or_create_conversation(db: Database, user_id: str, participant_id: str, product_id: Optional[str] = None) -> Dict[str, Any]:
    if participant_id == user_id:
        raise InvalidRequestError("Cannot start a conversation with yourself")
    if not AccountStore(db).find_by_id(participant_id):
        raise NotFoundError("User not found")
    query: Dict[str, Any] = {"participants": {"$all": [user_id, participant_id]}}
    if product_id:
        find_or_404(db, "product", product_id, "Product")
        query["product_id"] = product_id
    existing = db["conversation"].find_one(query)
    if existing:
        return existing
    conversation = Conversation(
        participants=[user_id, participant_id],
        product_id=product_id,
        unread_counts={user_id: 0, participant_id: 0},
    )
    conversation_id = create_document(db, "conversation", conversation)
    logger.info("Conversation %s opened between %s and %s", conversation_id, user_id, participant_id)
    return db["conversation"].find_one({"_id": to_object_id(conversation_id)})


def list_conversations(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """The user's conversations, most recently active first, each with its ``unread_count``."""
    conversations = list(db["conversation"].find({"participants": user_id}).sort("updated_at", DESCENDING))
    for conversation in conversations:
        conversation["unread_count"] = (conversation.get("unread_counts") or {}).get(user_id, 0)
    return conversations


def send_message(
    db: Database,
    conversation_id: str,
    sender_id: str,
    content: str,
    message_type: str = "text",
    attachments: Optional[List[str]] = None,
) -> Dict[str, Any]:
    conversation = _participant_of(db, conversation_id, sender_id)
    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        attachments=attachments or [],
        read_by={sender_id: now},
    )
    message_id = create_document(db, "message", message)
    others = [p for p in conversation["participants"] if p != sender_id]
    db["conversation"].update_one(
        {"_id": conversation["_id"]},
        {
            "$set": {
                "last_message": {"content": content, "sender_id": sender_id, "created_at": now},
                "updated_at": now,
            },
            "$inc": {f"unread_counts.{p}": 1 for p in others},
        },
    )
    return db["message"].find_one({"_id": to_object_id(message_id)})


def get_messages(db: Database, conversation_id: str, user_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
    """One page of a conversation, counted back from the newest message and returned oldest first."""
    _participant_of(db, conversation_id, user_id)
    query = {"conversation_id": conversation_id, "is_deleted": False}
    page = max(page, 1)
    cursor = (
        db["message"].find(query)
        .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    items = list(cursor)
    items.reverse()
    return {"items": items, "total": db["message"].count_documents(query), "page": page, "limit": limit}


def mark_conversation_read(db: Database, conversation_id: str, user_id: str) -> int:
    conversation = _participant_of(db, conversation_id, user_id)
    receipt = f"read_by.{user_id}"
    result = db["message"].update_many(
        {"conversation_id": conversation_id, receipt: {"$exists": False}},
        {"$set": {receipt: utcnow()}},
    )
    db["conversation"].update_one({"_id": conversation["_id"]}, {"$set": {f"unread_counts.{user_id}": 0}})
    return result.modified_count


def delete_message(db: Database, message_id: str, user_id: str) -> Dict[str, Any]:
    message = find_or_404(db, "message", message_id, "Message")
    if message["sender_id"] != user_id:
        raise ForbiddenError("Not authorized to delete this message")
    now = utcnow()
    return db["message"].find_one_and_update(
        {"_id": message["_id"]},
        {"$set": {"is_deleted": True, "content": DELETED_CONTENT, "deleted_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
