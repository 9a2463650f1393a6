"""
Client-side message list.

Optimistic sends, relay deliveries and poll results all go through
`MessageList.merge`, which keys entries by server id and falls back to the
message uuid (the client token of an optimistic send). An entry already
present under either key is never appended again; a pending entry is replaced
in place by its confirmed copy.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional
from uuid import UUID, uuid4

from hazardwatch.messages.schemas import Message
from hazardwatch.users.schemas import UserSummary


@dataclass
class ChatEntry:
    content: str
    sender_id: int
    created_at: datetime
    message_type: str = "text"
    id: Optional[int] = None
    uuid: Optional[UUID] = None
    conversation_id: Optional[int] = None
    read_at: Optional[datetime] = None
    sender: Optional[UserSummary] = None
    pending: bool = False

    @classmethod
    def from_message(cls, message: Message) -> "ChatEntry":
        return cls(
            id=message.id,
            uuid=message.uuid,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=message.content,
            message_type=message.message_type,
            created_at=message.created_at,
            read_at=message.read_at,
            sender=message.sender,
        )

    @classmethod
    def pending_for(
        cls,
        content: str,
        sender_id: int,
        conversation_id: Optional[int] = None,
        message_type: str = "text",
    ) -> "ChatEntry":
        return cls(
            uuid=uuid4(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=datetime.now(timezone.utc),
            pending=True,
        )

    @property
    def sort_key(self):
        # Entries without a server id sort after confirmed ones at the same instant
        return (self.created_at, self.id is None, self.id or 0)


class MergeOutcome(str, Enum):
    APPENDED = "appended"  # new entry, landed at the tail
    INSERTED = "inserted"  # new entry, landed before the tail
    REPLACED = "replaced"  # confirmed copy took over a pending entry
    DUPLICATE = "duplicate"


@dataclass
class MessageList:
    _entries: List[ChatEntry] = field(default_factory=list)
    _by_id: Dict[int, ChatEntry] = field(default_factory=dict)
    _by_token: Dict[UUID, ChatEntry] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ChatEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[ChatEntry]:
        return list(self._entries)

    @property
    def pending(self) -> List[ChatEntry]:
        return [entry for entry in self._entries if entry.pending]

    def get(self, message_id: int) -> Optional[ChatEntry]:
        return self._by_id.get(message_id)

    def _find(self, entry: ChatEntry) -> Optional[ChatEntry]:
        if entry.id is not None and entry.id in self._by_id:
            return self._by_id[entry.id]
        if entry.uuid is not None and entry.uuid in self._by_token:
            return self._by_token[entry.uuid]
        return None

    def _index(self, entry: ChatEntry):
        if entry.id is not None:
            self._by_id[entry.id] = entry
        if entry.uuid is not None:
            self._by_token[entry.uuid] = entry

    def _unindex(self, entry: ChatEntry):
        if entry.id is not None and self._by_id.get(entry.id) is entry:
            del self._by_id[entry.id]
        if entry.uuid is not None and self._by_token.get(entry.uuid) is entry:
            del self._by_token[entry.uuid]

    def merge(self, entry: ChatEntry) -> MergeOutcome:
        existing = self._find(entry)

        if existing is not None:
            if existing.pending and not entry.pending:
                position = self._entries.index(existing)
                self._unindex(existing)
                self._entries[position] = entry
                self._index(entry)
                self._entries.sort(key=lambda e: e.sort_key)
                return MergeOutcome.REPLACED

            if entry.read_at is not None and existing.read_at is None:
                existing.read_at = entry.read_at
            return MergeOutcome.DUPLICATE

        at_tail = not self._entries or entry.sort_key >= self._entries[-1].sort_key
        self._entries.append(entry)
        self._index(entry)
        self._entries.sort(key=lambda e: e.sort_key)

        return MergeOutcome.APPENDED if at_tail else MergeOutcome.INSERTED

    def remove_pending(self, token: UUID) -> bool:
        entry = self._by_token.get(token)
        if entry is None or not entry.pending:
            return False

        self._entries.remove(entry)
        self._unindex(entry)
        return True
