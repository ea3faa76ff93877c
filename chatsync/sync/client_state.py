"""Client-side merge of REST snapshots and live socket events.

A client that follows these rules converges on the server's view no matter
how many duplicate or missing live events it sees: REST responses replace
local state, live events are applied idempotently keyed by identity, and a
reconnect is followed by a fresh fetch.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

# reference inactivity window after which a client emits typing:stop
TYPING_TIMEOUT_SECONDS = 3.0


def _message_key(message: Dict[str, Any]):
    return (message.get("created_at") or "", message.get("id") or "")


@dataclass
class ClientSyncState:

    user_id: str
    typing_timeout: float = TYPING_TIMEOUT_SECONDS
    clock: Callable[[], float] = time.monotonic
    conversations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    messages: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    online_users: Set[str] = field(default_factory=set)
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    active_conversation: Optional[str] = None
    _typing: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def load_conversations(self, summaries: List[Dict[str, Any]]) -> None:
        self.conversations = {summary["id"]: dict(summary) for summary in summaries}

    def load_messages(self, conversation_id: str, messages: List[Dict[str, Any]]) -> None:
        bucket = self.messages.setdefault(conversation_id, {})
        for message in messages:
            bucket[message["id"]] = dict(message)

    def open_conversation(self, conversation_id: Optional[str]) -> None:
        self.active_conversation = conversation_id
        if conversation_id in self.conversations:
            self.conversations[conversation_id]["unread_count"] = 0

    def reset(self) -> None:
        """Forget live-only state after a disconnect; a fresh fetch follows."""
        self.online_users.clear()
        self._typing.clear()

    def ordered_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return sorted(self.messages.get(conversation_id, {}).values(), key=_message_key)

    def apply_event(self, event: str, data: Dict[str, Any]) -> bool:
        """Apply one live event; returns False when it changed nothing."""
        handler = {
            "message:new": self._on_message,
            "conversation:update": self._on_conversation_update,
            "message:react": self._on_reaction,
            "typing:start": self._on_typing_start,
            "typing:stop": self._on_typing_stop,
            "user:status": self._on_status,
            "notification:new": self._on_notification,
        }.get(event)
        if handler is None:
            return False
        return handler(data)

    def _on_message(self, data: Dict[str, Any]) -> bool:
        message = data["message"]
        conversation_id = data.get("conversation_id") or message["conversation_id"]
        bucket = self.messages.setdefault(conversation_id, {})
        if message["id"] in bucket:
            return False
        bucket[message["id"]] = dict(message)
        # a new message implies its sender stopped typing
        self._typing.get(conversation_id, {}).pop(message["sender_id"], None)
        conversation = self.conversations.get(conversation_id)
        if conversation is not None:
            conversation["last_message"] = {
                "text": message.get("text") if message.get("type", "text") == "text" else f"Sent a {message.get('type')}",
                "sender_id": message["sender_id"],
                "sender_name": message.get("sender_name", ""),
                "type": message.get("type", "text"),
                "created_at": message["created_at"],
            }
            conversation["last_message_at"] = message["created_at"]
        return True

    def _on_conversation_update(self, data: Dict[str, Any]) -> bool:
        conversation = self.conversations.get(data["conversation_id"])
        if conversation is None:
            return False
        unread = 0 if data["conversation_id"] == self.active_conversation else int(data.get("unread_count", 0))
        changed = conversation.get("unread_count") != unread
        conversation["unread_count"] = unread
        if data.get("last_message"):
            conversation["last_message"] = data["last_message"]
            conversation["last_message_at"] = data["last_message"].get("created_at")
            changed = True
        return changed

    def _on_reaction(self, data: Dict[str, Any]) -> bool:
        message = self.messages.get(data["conversation_id"], {}).get(data["message_id"])
        if message is None:
            return False
        reactions = [r for r in message.get("reactions", []) if r["user_id"] != data["user_id"]]
        existing = [r for r in message.get("reactions", []) if r["user_id"] == data["user_id"]]
        reactions.append({"user_id": data["user_id"], "reaction": data["reaction"]})
        message["reactions"] = reactions
        return not (existing and existing[0]["reaction"] == data["reaction"])

    def _on_typing_start(self, data: Dict[str, Any]) -> bool:
        if data["user_id"] == self.user_id:
            return False
        bucket = self._typing.setdefault(data["conversation_id"], {})
        is_new = data["user_id"] not in bucket
        bucket[data["user_id"]] = self.clock() + self.typing_timeout
        return is_new

    def _on_typing_stop(self, data: Dict[str, Any]) -> bool:
        bucket = self._typing.get(data["conversation_id"])
        if not bucket or data["user_id"] not in bucket:
            return False
        del bucket[data["user_id"]]
        if not bucket:
            del self._typing[data["conversation_id"]]
        return True

    def _on_status(self, data: Dict[str, Any]) -> bool:
        before = data["user_id"] in self.online_users
        if data.get("status") == "online":
            self.online_users.add(data["user_id"])
        else:
            self.online_users.discard(data["user_id"])
        return before != (data["user_id"] in self.online_users)

    def _on_notification(self, data: Dict[str, Any]) -> bool:
        if data.get("conversation_id") == self.active_conversation:
            return False
        message_id = data.get("message_id")
        if message_id and any(n.get("message_id") == message_id for n in self.notifications):
            return False
        self.notifications.append(dict(data))
        return True

    def typing_users(self, conversation_id: str) -> Set[str]:
        bucket = self._typing.get(conversation_id, {})
        now = self.clock()
        for user_id in [u for u, deadline in bucket.items() if deadline <= now]:
            del bucket[user_id]
        return set(bucket)

    def reaction_counts(self, conversation_id: str, message_id: str) -> Dict[str, int]:
        message = self.messages.get(conversation_id, {}).get(message_id) or {}
        return dict(Counter(r["reaction"] for r in message.get("reactions", [])))


class TypingSignal:
    """
    Decides when a composing client emits typing:start / typing:stop.

    ``keystroke`` returns "typing:start" on the first key after idle;
    ``poll`` returns "typing:stop" once the inactivity window elapsed;
    ``reset`` (send or blur) returns "typing:stop" if a start is pending.
    """

    def __init__(self, timeout: float = TYPING_TIMEOUT_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._timeout = timeout
        self._clock = clock
        self._deadline: Optional[float] = None

    def keystroke(self) -> Optional[str]:
        started = self._deadline is None
        self._deadline = self._clock() + self._timeout
        return "typing:start" if started else None

    def poll(self) -> Optional[str]:
        if self._deadline is not None and self._clock() >= self._deadline:
            self._deadline = None
            return "typing:stop"
        return None

    def reset(self) -> Optional[str]:
        if self._deadline is None:
            return None
        self._deadline = None
        return "typing:stop"
