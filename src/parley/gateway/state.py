"""
gateway/state.py — Shared Chat State

One ChatState lives for the whole process. The gateway writes to it; the
presentation layer reads snapshots from it, possibly from another thread.

Locking:
  - the entry log and the users map each have their own threading.Lock
  - the focus flag is a threading.Event (no multi-field invariant)
  - the notification handle has its own lock; read-and-replace must be atomic
No lock is ever held across an await, and no method takes two locks at once.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from parley.gateway.notifications import NotificationSink
from parley.gateway.protocol import Message, Status, User
from parley.observability.logger import get_logger

log = get_logger(__name__)


class Style(str, Enum):
    """Display hint attached to every log entry."""

    DEFAULT   = "default"
    HIGHLIGHT = "highlight"   # message mentions the local user
    SUCCESS   = "success"     # informational system notice
    ERROR     = "error"       # error system notice


@dataclass(frozen=True)
class SystemNotice:
    content: str


@dataclass(frozen=True)
class LogEntry:
    item: Union[Message, SystemNotice]
    style: Style = Style.DEFAULT

    @property
    def is_notice(self) -> bool:
        return isinstance(self.item, SystemNotice)

    def __str__(self) -> str:
        if isinstance(self.item, SystemNotice):
            return self.item.content
        return f"[{self.item.author}]: {self.item.content}"


def mentions(content: str, name: str) -> bool:
    """True if `name` appears in `content`, ignoring case."""
    return name.casefold() in content.casefold()


class ChatState:
    """
    Shared context for the gateway client and its presentation collaborator.

    Users map invariant: an OFFLINE user is never stored.
    """

    def __init__(self, name: str, notifier: Optional[NotificationSink] = None) -> None:
        self.name = name
        self._entries: list[LogEntry] = []
        self._entries_lock = threading.Lock()
        self._users: dict[int, User] = {}
        self._users_lock = threading.Lock()
        self._focused = threading.Event()
        self._focused.set()
        self._notifier = notifier
        self._notification: Any = None
        self._notification_lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Entry log (append-only)
    # ─────────────────────────────────────────────────────────────────────────

    def append_message(self, message: Message) -> LogEntry:
        """Append a chat message, highlighted if it mentions the local user."""
        style = Style.HIGHLIGHT if mentions(message.content, self.name) else Style.DEFAULT
        entry = LogEntry(message, style)
        with self._entries_lock:
            self._entries.append(entry)
        return entry

    def notice(self, content: str, *, error: bool = False) -> LogEntry:
        """Append a system notice."""
        entry = LogEntry(SystemNotice(content), Style.ERROR if error else Style.SUCCESS)
        with self._entries_lock:
            self._entries.append(entry)
        return entry

    def snapshot_log(self) -> list[LogEntry]:
        with self._entries_lock:
            return list(self._entries)

    # ─────────────────────────────────────────────────────────────────────────
    # Online users
    # ─────────────────────────────────────────────────────────────────────────

    def seed_users(self, self_user: User, online_users: tuple[User, ...] | list[User]) -> None:
        """
        Replace the online users with a fresh snapshot: the local user, then
        every online user. Later entries for the same id overwrite earlier ones.
        """
        with self._users_lock:
            self._users.clear()
            for user in (self_user, *online_users):
                if user.is_offline:
                    self._users.pop(user.id, None)
                else:
                    self._users[user.id] = user

    def upsert_user(self, user: User) -> bool:
        """Insert or replace `user`. OFFLINE users are not inserted. Returns True if stored."""
        if user.is_offline:
            return False
        with self._users_lock:
            self._users[user.id] = user
        return True

    def remove_user(self, user_id: int) -> bool:
        """Remove `user_id`; a no-op if absent. Returns True if it was present."""
        with self._users_lock:
            return self._users.pop(user_id, None) is not None

    def update_status(self, user_id: int, status: Status) -> bool:
        """
        Set the status of a known user. Returns False if the user is absent.

        An OFFLINE status removes the user instead.
        """
        with self._users_lock:
            if status.is_offline:
                self._users.pop(user_id, None)
                return True
            user = self._users.get(user_id)
            if user is None:
                return False
            self._users[user_id] = user.model_copy(update={"status": status})
            return True

    def get_user(self, user_id: int) -> Optional[User]:
        with self._users_lock:
            return self._users.get(user_id)

    def snapshot_users(self) -> dict[int, User]:
        with self._users_lock:
            return dict(self._users)

    # ─────────────────────────────────────────────────────────────────────────
    # Focus + notifications
    # ─────────────────────────────────────────────────────────────────────────

    def is_focused(self) -> bool:
        return self._focused.is_set()

    def set_focused(self, focused: bool) -> None:
        """Toggle focus. Regaining focus dismisses the displayed notification."""
        if not focused:
            self._focused.clear()
            return
        self._focused.set()
        with self._notification_lock:
            handle, self._notification = self._notification, None
        if handle is not None and self._notifier is not None:
            try:
                self._notifier.close(handle)
            except Exception as e:
                log.warning("notification.close_failed", error=str(e))

    @property
    def has_notification(self) -> bool:
        with self._notification_lock:
            return self._notification is not None

    def notify(self, summary: str, body: str) -> None:
        """Create the notification, or update the one already displayed."""
        if self._notifier is None:
            return
        with self._notification_lock:
            try:
                if self._notification is None:
                    self._notification = self._notifier.show(summary, body)
                else:
                    self._notifier.update(self._notification, summary, body)
            except Exception as e:
                # A broken notification daemon must not stop message handling.
                log.warning("notification.failed", error=str(e), error_type=type(e).__name__)
                self._notification = None
