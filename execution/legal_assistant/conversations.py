"""
Conversation and Message store.

A conversation keeps its messages in order and accumulates the ids of the
documents that are implicitly in scope for it. The id set only grows; an id
leaves it only when that document is deleted.

Message appends for one conversation are serialised through a
per-conversation lock (``turn_lock``); different conversations never
contend.
"""

import uuid
import logging
import threading
from typing import Optional, Iterable
from datetime import datetime, timezone
from contextlib import contextmanager
from dataclasses import dataclass, field, replace

from .errors import ConversationNotFound, InvalidArgument

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "assistant", "system")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: str
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    used_chunks: tuple = ()  # ((document_id, chunk_index), ...)
    # Explicit scope of the turn this user message started; empty means conversation scope
    attached_document_ids: tuple = ()

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
            "usedChunks": [
                {"documentId": doc_id, "chunkIndex": idx}
                for doc_id, idx in self.used_chunks
            ],
            "attachedDocumentIds": list(self.attached_document_ids),
        }


@dataclass
class Conversation:
    """Ordered messages plus the documents implicitly in scope."""
    conversation_id: str
    owner_id: str
    title: str = "New Conversation"
    messages: list = field(default_factory=list)
    document_ids: list = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def copy(self) -> "Conversation":
        return replace(
            self,
            messages=list(self.messages),
            document_ids=list(self.document_ids),
        )

    def to_summary(self) -> dict:
        last = self.messages[-1].content[:100] if self.messages else None
        return {
            "id": self.conversation_id,
            "title": self.title,
            "messageCount": len(self.messages),
            "lastMessage": last,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class ConversationStore:
    """Thread-safe in-memory conversation store."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._turn_locks: dict[str, threading.Lock] = {}
        self._lock = threading.RLock()

    def create_conversation(
        self,
        owner_id: str,
        title: str = "New Conversation",
        document_ids: Iterable[str] = (),
    ) -> Conversation:
        conversation = Conversation(
            conversation_id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title,
        )
        _extend_unique(conversation.document_ids, document_ids)

        with self._lock:
            self._conversations[conversation.conversation_id] = conversation
            self._turn_locks[conversation.conversation_id] = threading.Lock()

        logger.info(f"Created conversation {conversation.conversation_id} for {owner_id}")
        return conversation.copy()

    def get_conversation(
        self,
        conversation_id: str,
        owner_id: Optional[str] = None,
    ) -> Conversation:
        with self._lock:
            return self._get(conversation_id, owner_id).copy()

    def list_conversations(self, owner_id: str) -> list[Conversation]:
        """List an owner's conversations, most recently updated first."""
        with self._lock:
            conversations = [
                c.copy() for c in self._conversations.values() if c.owner_id == owner_id
            ]
        conversations.sort(key=lambda c: (c.updated_at, c.conversation_id), reverse=True)
        return conversations

    def delete_conversation(self, conversation_id: str, owner_id: Optional[str] = None) -> bool:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None or (owner_id is not None and conversation.owner_id != owner_id):
                return False
            del self._conversations[conversation_id]
            self._turn_locks.pop(conversation_id, None)

        logger.info(f"Deleted conversation {conversation_id}")
        return True

    def add_document_ids(self, conversation_id: str, document_ids: Iterable[str]) -> list[str]:
        """Append ids to the conversation's implicit scope, skipping duplicates."""
        with self._lock:
            conversation = self._get(conversation_id, None)
            added = _extend_unique(conversation.document_ids, document_ids)
            if added:
                conversation.updated_at = _utcnow()
                logger.info(f"Conversation {conversation_id}: +{len(added)} documents in scope")
            return list(conversation.document_ids)

    def forget_document(self, document_id: str) -> int:
        """Drop a deleted document from every conversation. Returns how many were touched."""
        touched = 0
        with self._lock:
            for conversation in self._conversations.values():
                if document_id in conversation.document_ids:
                    conversation.document_ids.remove(document_id)
                    touched += 1
        return touched

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        used_chunks: Iterable[tuple] = (),
        attached_document_ids: Iterable[str] = (),
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise InvalidArgument(f"Unknown message role: {role!r}")

        message = Message(
            role=role,
            content=content,
            used_chunks=tuple(used_chunks),
            attached_document_ids=tuple(attached_document_ids),
        )
        with self._lock:
            conversation = self._get(conversation_id, None)
            conversation.messages.append(message)
            conversation.updated_at = message.created_at
        return message

    def set_title(self, conversation_id: str, title: str) -> None:
        with self._lock:
            self._get(conversation_id, None).title = title

    def count(self) -> int:
        with self._lock:
            return len(self._conversations)

    @contextmanager
    def turn_lock(self, conversation_id: str):
        """Serialise chat turns (message appends) for one conversation."""
        with self._lock:
            self._get(conversation_id, None)
            lock = self._turn_locks[conversation_id]
        with lock:
            yield

    def _get(self, conversation_id: str, owner_id: Optional[str]) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or (owner_id is not None and conversation.owner_id != owner_id):
            raise ConversationNotFound(conversation_id)
        return conversation


def _extend_unique(target: list, items: Iterable[str]) -> list:
    added = []
    for item in items:
        if item not in target:
            target.append(item)
            added.append(item)
    return added
