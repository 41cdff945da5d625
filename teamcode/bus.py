"""
In-process message bus for teammates.

send() records the message, then calls every handler subscribed under the
recipient's name right away, on the sender's thread. A handler that raises
is logged and skipped: the sender and the other handlers never see it.

Handlers are snapshotted under the lock and invoked outside it, so a handler
may itself call send() without deadlocking. Handlers must still return
quickly; the usual handler just queues the message for its owner.

    lead ----send("alice", ...)----> [history] ----> alice's handlers
    bob  ----broadcast(...)--------> every subscriber except bob
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

MESSAGE_TYPES = {"message", "idle", "task_update", "shutdown", "broadcast"}
LEAD = "lead"
ALL = "all"


@dataclass
class TeamMessage:
    sender: str
    to: str
    content: str
    type: str = "message"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    timestamp: float = field(default_factory=time.time)


class MessageBus:
    def __init__(self):
        self._subscribers = {}
        self._history = []
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: Callable[[TeamMessage], None]):
        with self._lock:
            self._subscribers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str):
        with self._lock:
            self._subscribers.pop(name, None)

    def subscribers(self) -> list:
        with self._lock:
            return list(self._subscribers)

    def send(self, sender: str, to: str, content: str, msg_type: str = "message") -> TeamMessage:
        if msg_type not in MESSAGE_TYPES:
            raise ValueError(f"Invalid message type '{msg_type}'")
        msg = TeamMessage(sender=sender, to=to, content=content, type=msg_type)
        with self._lock:
            self._history.append(msg)
            handlers = list(self._subscribers.get(to, []))
        logger.debug("Message %s -> %s [%s]: %.100s", sender, to, msg_type, content)

        for handler in handlers:
            try:
                handler(msg)
            except Exception:
                logger.error("Message delivery error for %s", to, exc_info=True)
        return msg

    def broadcast(self, sender: str, content: str, msg_type: str = "broadcast") -> list:
        return [self.send(sender, name, content, msg_type)
                for name in self.subscribers() if name != sender]

    def send_idle(self, sender: str) -> TeamMessage:
        return self.send(sender, LEAD, f'Teammate "{sender}" is now idle.', "idle")

    def send_shutdown(self, to: str) -> TeamMessage:
        return self.send(LEAD, to, "Please shut down.", "shutdown")

    def send_task_update(self, sender: str, task_id: str, status: str) -> TeamMessage:
        return self.send(sender, LEAD, f"Task {task_id} is now {status}", "task_update")

    def get_history(self, name: str = None) -> list:
        with self._lock:
            if name is None:
                return list(self._history)
            return [m for m in self._history if name in (m.sender, m.to) or m.to == ALL]

    def get_undelivered(self, name: str, since: float) -> list:
        """Messages addressed to `name` after `since`, for catching up after
        a missed delivery. Best effort: timestamps are wall-clock."""
        with self._lock:
            return [m for m in self._history if m.to in (name, ALL) and m.timestamp > since]

    def clear(self):
        with self._lock:
            self._history = []
            self._subscribers.clear()
