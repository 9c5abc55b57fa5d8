"""Per-conversation transcript store with paired trimming and LRU eviction.

History is size-bounded, not summarised. Trimming removes whole units so
an assistant tool_use message and the user tool_result message answering
it are always kept or dropped together, and the history always starts
with a plain user message.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from helm.agent.messages import Message

logger = logging.getLogger(__name__)

MAX_CONVERSATIONS = 100
MAX_HISTORY_MESSAGES = 30


def _is_exchange_start(message: Message) -> bool:
    """A user message that is not a tool_result answer opens a new exchange."""
    return message.role == "user" and not message.is_tool_result


def trim_messages(messages: list[Message], max_messages: int) -> list[Message]:
    """Return a trimmed copy of messages holding at most max_messages entries.

    1. Drop whole oldest exchanges (user input + everything it triggered).
    2. If the newest exchange alone is still too long, drop its oldest
       (assistant tool_use, user tool_result) pairs right after the
       opening user message.

    The result may exceed max_messages only when no pair can be removed
    without splitting one.
    """
    trimmed = list(messages)

    # Leading messages that do not open an exchange can never be replayed
    while trimmed and not _is_exchange_start(trimmed[0]):
        trimmed.pop(0)

    while len(trimmed) > max_messages:
        next_start = next(
            (i for i in range(1, len(trimmed)) if _is_exchange_start(trimmed[i])),
            None,
        )
        if next_start is None:
            break
        del trimmed[:next_start]

    while (
        len(trimmed) > max_messages
        and len(trimmed) > 3
        and trimmed[1].role == "assistant"
        and trimmed[1].tool_uses
        and trimmed[2].is_tool_result
    ):
        del trimmed[1:3]

    return trimmed


class TranscriptStore:
    """Ordered message history per conversation id.

    Conversations are created on first append and evicted least recently
    used once more than max_conversations are held; pinned conversations
    are skipped. All operations take a lock, so the store may be shared
    across threads as well as tasks.
    """

    def __init__(
        self,
        max_messages: int = MAX_HISTORY_MESSAGES,
        max_conversations: int = MAX_CONVERSATIONS,
    ) -> None:
        self.max_messages = max_messages
        self.max_conversations = max_conversations
        self._conversations: OrderedDict[str, list[Message]] = OrderedDict()
        self._lock = threading.Lock()
        self._pinned: set[str] = set()

    def pin(self, conversation_id: str) -> None:
        """Exempt a conversation from eviction (while a loop is writing to it)."""
        with self._lock:
            self._pinned.add(conversation_id)

    def unpin(self, conversation_id: str) -> None:
        with self._lock:
            self._pinned.discard(conversation_id)

    def append(self, conversation_id: str, message: Message) -> None:
        """Append a message, creating the conversation if needed."""
        with self._lock:
            self._touch(conversation_id).append(message)

    def read(self, conversation_id: str) -> list[Message]:
        """Snapshot of the conversation's messages (empty if unknown)."""
        with self._lock:
            return list(self._conversations.get(conversation_id, ()))

    def trim(self, conversation_id: str, max_messages: int | None = None) -> int:
        """Trim history in paired units. Returns the number of messages dropped."""
        limit = max_messages if max_messages is not None else self.max_messages
        with self._lock:
            messages = self._conversations.get(conversation_id)
            if messages is None:
                return 0
            trimmed = trim_messages(messages, limit)
            dropped = len(messages) - len(trimmed)
            self._conversations[conversation_id] = trimmed
        if dropped:
            logger.debug(
                "Trimmed %d messages from conversation %s (%d kept)",
                dropped,
                conversation_id,
                len(trimmed),
            )
        return dropped

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)

    def conversation_ids(self) -> list[str]:
        """Ids from least to most recently used."""
        with self._lock:
            return list(self._conversations)

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._conversations

    def _touch(self, conversation_id: str) -> list[Message]:
        """Get or create a conversation and mark it most recently used. Caller holds the lock."""
        if conversation_id in self._conversations:
            self._conversations.move_to_end(conversation_id)
            return self._conversations[conversation_id]

        while len(self._conversations) >= self.max_conversations:
            evicted = next((cid for cid in self._conversations if cid not in self._pinned), None)
            if evicted is None:
                break
            del self._conversations[evicted]
            logger.info("Evicted least recently used conversation %s", evicted)

        messages: list[Message] = []
        self._conversations[conversation_id] = messages
        return messages
