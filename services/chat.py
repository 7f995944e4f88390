import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from services import validation

MAX_MESSAGE_LENGTH = 2000


@dataclass(frozen=True)
class PendingMessage:
    """A message shown locally before the store has confirmed it."""

    local_ref: str
    sender_id: str
    content: str
    created_at: str
    receiver_id: Optional[str] = None

    @property
    def is_group(self):
        return self.receiver_id is None


@dataclass(frozen=True)
class ConfirmedMessage:
    id: str
    sender_id: str
    content: str
    created_at: str
    receiver_id: Optional[str] = None

    @property
    def is_group(self):
        return self.receiver_id is None


OutgoingMessage = Union[PendingMessage, ConfirmedMessage]


def _clean_content(content):
    text = (content or "").strip()
    errors = {}
    validation.validate_required(text, "content", errors)
    if len(text) > MAX_MESSAGE_LENGTH:
        errors["content"] = f"Messages are limited to {MAX_MESSAGE_LENGTH} characters."
    return text, errors


def compose(sender_id, content, receiver_id=None):
    text, errors = _clean_content(content)
    if errors:
        return None, errors
    pending = PendingMessage(
        local_ref=uuid.uuid4().hex,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=text,
        created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    )
    return pending, {}


def deliver(repository, pending):
    """Persist a pending message and return its confirmed counterpart."""
    if pending.is_group:
        row = repository.insert_one(
            "group_messages",
            {
                "sender_id": pending.sender_id,
                "content": pending.content,
                "created_at": pending.created_at,
            },
        )
    else:
        row = repository.insert_one(
            "chat_messages",
            {
                "sender_id": pending.sender_id,
                "receiver_id": pending.receiver_id,
                "content": pending.content,
                "is_read": 0,
                "created_at": pending.created_at,
            },
        )
    return ConfirmedMessage(
        id=row["id"],
        sender_id=row["sender_id"],
        receiver_id=row.get("receiver_id"),
        content=row["content"],
        created_at=row["created_at"],
    )


def send_direct(repository, sender_id, receiver_id, content):
    errors = {}
    validation.validate_required(receiver_id, "receiver_id", errors)
    if receiver_id and receiver_id == sender_id:
        errors["receiver_id"] = "Pick another user to talk to."
    pending, content_errors = compose(sender_id, content, receiver_id=receiver_id)
    errors.update(content_errors)
    if errors:
        return {"errors": errors, "message": None}
    return {"errors": {}, "message": deliver(repository, pending)}


def send_group(repository, sender_id, content):
    pending, errors = compose(sender_id, content)
    if errors:
        return {"errors": errors, "message": None}
    return {"errors": {}, "message": deliver(repository, pending)}


def list_direct(repository, user_id, other_user_id):
    messages = [
        message
        for message in repository.list_all("chat_messages")
        if {message.get("sender_id"), message.get("receiver_id")} == {user_id, other_user_id}
    ]
    return sorted(messages, key=lambda message: message.get("created_at") or "")


def list_group(repository):
    return sorted(
        repository.list_all("group_messages"),
        key=lambda message: message.get("created_at") or "",
    )


def mark_read(repository, receiver_id, sender_id):
    unread_ids = [
        message["id"]
        for message in repository.list_all("chat_messages")
        if message.get("receiver_id") == receiver_id
        and message.get("sender_id") == sender_id
        and not message.get("is_read")
    ]
    if not unread_ids:
        return 0
    return repository.update_where("chat_messages", unread_ids, {"is_read": 1})


def unread_counts(repository, receiver_id):
    counts = {}
    for message in repository.list_all("chat_messages"):
        if message.get("receiver_id") == receiver_id and not message.get("is_read"):
            counts[message["sender_id"]] = counts.get(message["sender_id"], 0) + 1
    return counts


def message_payload(message: OutgoingMessage) -> dict:
    if isinstance(message, PendingMessage):
        return {
            "state": "pending",
            "local_ref": message.local_ref,
            "sender_id": message.sender_id,
            "receiver_id": message.receiver_id,
            "content": message.content,
            "created_at": message.created_at,
        }
    return {
        "state": "confirmed",
        "id": message.id,
        "sender_id": message.sender_id,
        "receiver_id": message.receiver_id,
        "content": message.content,
        "created_at": message.created_at,
    }
