"""Canonical in-memory chat state.

All mutation goes through the methods below; entities are frozen and are
swapped in their slot on update. Per-chat message lists are kept sorted by
``(timestamp, id)`` with at most one entry per id.
"""
from __future__ import annotations

import bisect
import dataclasses
import logging
from typing import Any, Callable, Iterable

from chat_sync.application.dto.events import StoreChange, StoreChangeKind
from chat_sync.application.dto.views import ChatListItem
from chat_sync.application.ports.clock import Clock
from chat_sync.config import Settings, settings as default_settings
from chat_sync.domain.entities.chat import Chat
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.presence import Presence
from chat_sync.domain.entities.receipt import Receipt
from chat_sync.domain.entities.typing_state import TypingState
from chat_sync.domain.value_objects.enums import MessageStatus

logger = logging.getLogger(__name__)

StoreListener = Callable[[StoreChange], None]


def _sort_key(message: Message) -> tuple[int, str]:
    return message.sort_key


class ReconciliationStore:
    def __init__(
        self,
        current_user_id: str,
        clock: Clock,
        *,
        config: Settings | None = None,
    ) -> None:
        self._config = config or default_settings
        self._clock = clock
        self.current_user_id = current_user_id

        self._chats: dict[str, Chat] = {}
        self._chat_added_at: dict[str, int] = {}
        self._messages: dict[str, list[Message]] = {}
        self._message_chat: dict[str, str] = {}
        self._receipts: dict[str, dict[str, Receipt]] = {}
        self._typing: dict[str, dict[str, TypingState]] = {}
        self._presence: dict[str, Presence] = {}
        self._current_chat_id: str | None = None

        self._listeners: list[StoreListener] = []

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- chats ---------------------------------------------------------

    def set_chats(self, chats: Iterable[Chat]) -> None:
        now = self._clock.now_ms()
        self._chats = {c.id: c for c in chats}
        self._chat_added_at = {cid: self._chat_added_at.get(cid, now) for cid in self._chats}
        self._notify(StoreChange(StoreChangeKind.CHATS))

    def add_chat(self, chat: Chat) -> None:
        self._chats[chat.id] = chat
        self._chat_added_at.setdefault(chat.id, self._clock.now_ms())
        self._notify(StoreChange(StoreChangeKind.CHATS, chat_id=chat.id))

    def update_chat(self, chat_id: str, **changes: Any) -> Chat | None:
        chat = self._chats.get(chat_id)
        if chat is None:
            return None
        chat = dataclasses.replace(chat, **changes)
        self._chats[chat_id] = chat
        self._notify(StoreChange(StoreChangeKind.CHATS, chat_id=chat_id))
        return chat

    def remove_chat(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)
        self._chat_added_at.pop(chat_id, None)
        for message in self._messages.pop(chat_id, []):
            if self._message_chat.get(message.id) == chat_id:
                del self._message_chat[message.id]
        self._typing.pop(chat_id, None)
        if self._current_chat_id == chat_id:
            self._current_chat_id = None
        self._notify(StoreChange(StoreChangeKind.CHATS, chat_id=chat_id))

    def mark_chat_read(self, chat_id: str, read_at: int) -> None:
        chat = self._chats.get(chat_id)
        if chat is None:
            return
        if chat.last_read_at is not None and chat.last_read_at >= read_at:
            return
        self.update_chat(chat_id, last_read_at=read_at)

    def set_current_chat(self, chat_id: str | None) -> None:
        self._current_chat_id = chat_id

    # -- messages ------------------------------------------------------

    def upsert_message(self, message: Message) -> Message:
        """Insert or replace by id (or by correlation id for optimistic entries)."""
        stored, _created = self._upsert(message)
        self._notify(StoreChange(StoreChangeKind.MESSAGES, chat_id=stored.chat_id, message_id=stored.id))
        return stored

    def set_messages(self, chat_id: str, messages: Iterable[Message]) -> None:
        """Bulk-merge a page of history into the chat."""
        for message in messages:
            if message.chat_id != chat_id:
                logger.warning("Skipping message %s for chat %s in history of %s", message.id, message.chat_id, chat_id)
                continue
            self._upsert(message)
        self._notify(StoreChange(StoreChangeKind.MESSAGES, chat_id=chat_id))

    def acknowledge(
        self,
        correlation_id: str,
        server_id: str | None = None,
        timestamp: int | None = None,
    ) -> Message | None:
        """Reconcile an optimistic entry with the server's ack.

        Swaps in the server id, raises status to at least Sent and never
        leaves the local copy behind as a duplicate.
        """
        found = self._locate_correlation(correlation_id)
        if found is None:
            logger.debug("Ack for unknown correlation id %s", correlation_id)
            return None
        chat_msgs, idx = found
        local = chat_msgs.pop(idx)
        self._message_chat.pop(local.id, None)

        new_id = server_id or local.id
        base = dataclasses.replace(
            local,
            id=new_id,
            timestamp=timestamp if timestamp is not None else local.timestamp,
        )
        dup_idx = _index_of(chat_msgs, new_id) if new_id != local.id else None
        if dup_idx is not None:
            # the authoritative copy got here first without a correlation id
            authoritative = chat_msgs.pop(dup_idx)
            base = dataclasses.replace(authoritative, correlation_id=correlation_id)
            self._decrement_count(base.chat_id)
        if base.status.rank < MessageStatus.SENT.rank:
            base = dataclasses.replace(base, status=MessageStatus.SENT)
        base = self._fold_receipts(base)

        bisect.insort(chat_msgs, base, key=_sort_key)
        self._message_chat[base.id] = base.chat_id
        self._notify(StoreChange(StoreChangeKind.MESSAGES, chat_id=base.chat_id, message_id=base.id))
        return base

    def set_message_status(self, message_id: str, status: MessageStatus) -> Message | None:
        found = self._locate(message_id)
        if found is None:
            return None
        chat_msgs, idx = found
        updated = dataclasses.replace(chat_msgs[idx], status=status)
        chat_msgs[idx] = updated
        self._notify(StoreChange(StoreChangeKind.MESSAGES, chat_id=updated.chat_id, message_id=message_id))
        return updated

    def _upsert(self, message: Message) -> tuple[Message, bool]:
        chat_msgs = self._messages.setdefault(message.chat_id, [])
        idx = _index_of(chat_msgs, message.id)
        if idx is None and message.correlation_id:
            idx = _index_of_correlation(chat_msgs, message.correlation_id)
        elif idx is not None and message.correlation_id:
            # optimistic entry superseded by a copy already stored under the server id
            if self._drop_superseded(chat_msgs, message.correlation_id, keep_id=message.id):
                idx = _index_of(chat_msgs, message.id)

        if idx is None:
            stored = self._fold_receipts(message)
            bisect.insort(chat_msgs, stored, key=_sort_key)
            self._message_chat[stored.id] = stored.chat_id
            self._touch_chat(stored)
            return stored, True

        existing = chat_msgs.pop(idx)
        if existing.id != message.id:
            self._message_chat.pop(existing.id, None)
        stored = _merge(existing, message)
        bisect.insort(chat_msgs, stored, key=_sort_key)
        self._message_chat[stored.id] = stored.chat_id
        return stored, False

    def remove_message(self, message_id: str) -> Message | None:
        """Delete a message along with its receipts."""
        found = self._locate(message_id)
        if found is None:
            return None
        chat_msgs, idx = found
        removed = chat_msgs.pop(idx)
        self._message_chat.pop(removed.id, None)
        self._receipts.pop(removed.id, None)
        self._decrement_count(removed.chat_id)
        self._notify(StoreChange(StoreChangeKind.MESSAGES, chat_id=removed.chat_id, message_id=removed.id))
        return removed

    def _drop_superseded(self, chat_msgs: list[Message], correlation_id: str, keep_id: str) -> bool:
        for i, m in enumerate(chat_msgs):
            if m.correlation_id == correlation_id and m.id != keep_id:
                del chat_msgs[i]
                self._message_chat.pop(m.id, None)
                self._receipts.pop(m.id, None)
                self._decrement_count(m.chat_id)
                return True
        return False

    def _decrement_count(self, chat_id: str) -> None:
        chat = self._chats.get(chat_id)
        if chat is not None and chat.message_count > 0:
            self._chats[chat_id] = dataclasses.replace(chat, message_count=chat.message_count - 1)

    def _touch_chat(self, message: Message) -> None:
        chat = self._chats.get(message.chat_id)
        if chat is None:
            return
        last = chat.last_message_at
        self._chats[chat.id] = dataclasses.replace(
            chat,
            last_message_at=message.timestamp if last is None else max(last, message.timestamp),
            message_count=chat.message_count + 1,
        )

    # -- receipts ------------------------------------------------------

    def apply_receipt(self, receipt: Receipt) -> bool:
        """Last-write-wins per (message, user); message status only moves forward."""
        per_message = self._receipts.setdefault(receipt.message_id, {})
        existing = per_message.get(receipt.user_id)
        if existing is not None and existing.timestamp >= receipt.timestamp:
            return False
        per_message[receipt.user_id] = receipt
        self._raise_status(receipt.message_id, receipt.status.as_message_status())
        self._notify(StoreChange(
            StoreChangeKind.RECEIPTS,
            chat_id=self._message_chat.get(receipt.message_id),
            message_id=receipt.message_id,
            user_id=receipt.user_id,
        ))
        return True

    def receipts_for(self, message_id: str) -> list[Receipt]:
        return list(self._receipts.get(message_id, {}).values())

    def _raise_status(self, message_id: str, status: MessageStatus) -> None:
        found = self._locate(message_id)
        if found is None:
            return
        chat_msgs, idx = found
        if status.rank > chat_msgs[idx].status.rank:
            chat_msgs[idx] = dataclasses.replace(chat_msgs[idx], status=status)

    def _fold_receipts(self, message: Message) -> Message:
        receipts = self._receipts.get(message.id)
        if not receipts:
            return message
        best = max((r.status.as_message_status() for r in receipts.values()), key=lambda s: s.rank)
        if best.rank > message.status.rank:
            return dataclasses.replace(message, status=best)
        return message

    # -- typing --------------------------------------------------------

    def set_typing(self, chat_id: str, user_id: str, is_typing: bool) -> None:
        chat_typing = self._typing.setdefault(chat_id, {})
        if is_typing:
            expires_at = self._clock.now_ms() + self._config.TYPING_TTL_MS
            chat_typing[user_id] = TypingState(chat_id=chat_id, user_id=user_id, expires_at=expires_at)
        elif chat_typing.pop(user_id, None) is None:
            return
        self._notify(StoreChange(StoreChangeKind.TYPING, chat_id=chat_id, user_id=user_id))

    def sweep_typing(self) -> int:
        """Drop expired typing entries whose stop signal never arrived."""
        now = self._clock.now_ms()
        removed = 0
        for chat_id, chat_typing in self._typing.items():
            expired = [uid for uid, state in chat_typing.items() if state.is_expired(now)]
            for uid in expired:
                del chat_typing[uid]
            if expired:
                removed += len(expired)
                self._notify(StoreChange(StoreChangeKind.TYPING, chat_id=chat_id))
        return removed

    def clear_typing(self, chat_id: str) -> None:
        if self._typing.pop(chat_id, None):
            self._notify(StoreChange(StoreChangeKind.TYPING, chat_id=chat_id))

    def typing_users(self, chat_id: str) -> list[str]:
        now = self._clock.now_ms()
        return [
            uid for uid, state in self._typing.get(chat_id, {}).items()
            if not state.is_expired(now)
        ]

    # -- presence ------------------------------------------------------

    def set_presence(self, presence: Presence) -> bool:
        existing = self._presence.get(presence.user_id)
        if existing is not None and existing.last_activity > presence.last_activity:
            return False
        self._presence[presence.user_id] = presence
        self._notify(StoreChange(StoreChangeKind.PRESENCE, user_id=presence.user_id))
        return True

    def remove_presence(self, user_id: str) -> None:
        if self._presence.pop(user_id, None) is not None:
            self._notify(StoreChange(StoreChangeKind.PRESENCE, user_id=user_id))

    def get_presence(self, user_id: str) -> Presence | None:
        return self._presence.get(user_id)

    # -- read views ----------------------------------------------------

    def chat(self, chat_id: str) -> Chat | None:
        return self._chats.get(chat_id)

    @property
    def current_chat(self) -> Chat | None:
        if self._current_chat_id is None:
            return None
        return self._chats.get(self._current_chat_id)

    def current_messages(self) -> list[Message]:
        if self._current_chat_id is None:
            return []
        return self.messages(self._current_chat_id)

    def messages(self, chat_id: str) -> list[Message]:
        return list(self._messages.get(chat_id, []))

    def get_message(self, message_id: str) -> Message | None:
        found = self._locate(message_id)
        if found is None:
            return None
        chat_msgs, idx = found
        return chat_msgs[idx]

    def find_by_correlation(self, correlation_id: str) -> Message | None:
        found = self._locate_correlation(correlation_id)
        if found is None:
            return None
        chat_msgs, idx = found
        return chat_msgs[idx]

    def unread_count(self, chat_id: str) -> int:
        chat = self._chats.get(chat_id)
        read_at = chat.last_read_at if chat is not None else None
        return sum(
            1 for m in self._messages.get(chat_id, [])
            if m.sender_id != self.current_user_id
            and (read_at is None or m.timestamp > read_at)
        )

    def total_unread(self) -> int:
        return sum(self.unread_count(cid) for cid in self._chats)

    def chat_list(self) -> list[ChatListItem]:
        items = [
            ChatListItem(
                chat=chat,
                unread_count=self.unread_count(chat.id),
                last_activity=(
                    chat.last_message_at
                    if chat.last_message_at is not None
                    else self._chat_added_at.get(chat.id, 0)
                ),
                typing_users=tuple(self.typing_users(chat.id)),
            )
            for chat in self._chats.values()
        ]
        items.sort(key=lambda item: (-item.last_activity, item.chat.id))
        return items

    # -- helpers -------------------------------------------------------

    def _locate(self, message_id: str) -> tuple[list[Message], int] | None:
        chat_id = self._message_chat.get(message_id)
        if chat_id is None:
            return None
        chat_msgs = self._messages.get(chat_id, [])
        idx = _index_of(chat_msgs, message_id)
        if idx is None:
            return None
        return chat_msgs, idx

    def _locate_correlation(self, correlation_id: str) -> tuple[list[Message], int] | None:
        for chat_msgs in self._messages.values():
            idx = _index_of_correlation(chat_msgs, correlation_id)
            if idx is not None:
                return chat_msgs, idx
        return None

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed")


def _index_of(messages: list[Message], message_id: str) -> int | None:
    for i, m in enumerate(messages):
        if m.id == message_id:
            return i
    return None


def _index_of_correlation(messages: list[Message], correlation_id: str) -> int | None:
    for i, m in enumerate(messages):
        if m.correlation_id == correlation_id:
            return i
    return None


def _merge(existing: Message, incoming: Message) -> Message:
    """Incoming content wins; status only moves to an equal or higher rank."""
    status = incoming.status if incoming.status.rank >= existing.status.rank else existing.status
    return dataclasses.replace(
        incoming,
        status=status,
        correlation_id=incoming.correlation_id or existing.correlation_id,
        edited_at=incoming.edited_at if incoming.edited_at is not None else existing.edited_at,
        metadata=incoming.metadata if incoming.metadata is not None else existing.metadata,
    )
