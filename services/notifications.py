"""In-process relay for insert events on the chat tables.

Writers publish every inserted row under its table name. A consumer calls
``subscribe`` once per event kind and later drains the queues with
``drain``, handing in the context (current user, known users) as it is at
that moment rather than as it was when the subscription was made. Order
changes are not published; order views are refreshed explicitly.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

EVENT_DIRECT_MESSAGE = "chat_messages"
EVENT_GROUP_MESSAGE = "group_messages"
EVENT_KINDS = (EVENT_DIRECT_MESSAGE, EVENT_GROUP_MESSAGE)

DEFAULT_QUEUE_SIZE = 200


@dataclass
class NotificationContext:
    current_user_id: str
    users: list = field(default_factory=list)

    def user_name(self, user_id, fallback):
        for user in self.users:
            if user.get("id") == user_id:
                return user.get("name") or fallback
        return fallback


class NotificationRelay:
    def __init__(self, queue_size=DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers = {}

    def subscribe(self, event_kind):
        if event_kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {event_kind}")
        subscription = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers.setdefault(event_kind, []).append(subscription)
        return subscription

    def unsubscribe(self, event_kind, subscription):
        with self._lock:
            subscribers = self._subscribers.get(event_kind, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def publish(self, event_kind, payload):
        with self._lock:
            subscribers = list(self._subscribers.get(event_kind, []))
        for subscription in subscribers:
            try:
                subscription.put_nowait((event_kind, payload))
            except queue.Full:
                # Drop the oldest event so the newest one still arrives.
                try:
                    subscription.get_nowait()
                except queue.Empty:
                    pass
                logger.warning("Notification queue full for %s; dropped oldest event.", event_kind)
                try:
                    subscription.put_nowait((event_kind, payload))
                except queue.Full:
                    logger.warning("Notification queue for %s refilled; dropped new event.", event_kind)


def build_notification(event_kind, message, context):
    """Turn one inserted chat row into a notification, or ``None`` if not for us."""
    if event_kind == EVENT_DIRECT_MESSAGE:
        if message.get("receiver_id") != context.current_user_id:
            return None
        return {
            "type": "chat",
            "is_group": False,
            "sender": context.user_name(message.get("sender_id"), "Compañero"),
            "sender_id": message.get("sender_id"),
            "message": message.get("content") or "",
            "created_at": message.get("created_at"),
        }
    if event_kind == EVENT_GROUP_MESSAGE:
        if message.get("sender_id") == context.current_user_id:
            return None
        return {
            "type": "chat",
            "is_group": True,
            "sender": context.user_name(message.get("sender_id"), "Alguien"),
            "sender_id": message.get("sender_id"),
            "message": message.get("content") or "",
            "created_at": message.get("created_at"),
        }
    return None


def drain(subscriptions, context):
    notifications = []
    for subscription in subscriptions:
        while True:
            try:
                event_kind, message = subscription.get_nowait()
            except queue.Empty:
                break
            notification = build_notification(event_kind, message, context)
            if notification:
                notifications.append(notification)
    notifications.sort(key=lambda entry: entry.get("created_at") or "")
    return notifications


class NotificationInbox:
    """One user's subscriptions to every chat event kind.

    ``subscribe`` is any callable taking an event kind and returning a queue,
    normally ``OrderRepository.subscribe_insert``.
    """

    def __init__(self, subscribe):
        self.subscriptions = [subscribe(kind) for kind in EVENT_KINDS]

    def collect(self, context):
        return drain(self.subscriptions, context)
