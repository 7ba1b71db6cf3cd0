"""
gateway/dispatcher.py — Inbound Event Dispatcher

Reads frames after the handshake until the socket closes, applying each
decoded event to the shared ChatState. Returns the Close that ended the
connection so the supervisor can decide how long to back off.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from websockets.exceptions import ConnectionClosed

from parley.exceptions import FrameDecodeError, UserLookupError
from parley.gateway.protocol import (
    Authenticated,
    Close,
    InboundEvent,
    MessageCreated,
    PresenceUpdated,
    User,
    UserUpdated,
    decode,
)
from parley.gateway.state import ChatState
from parley.observability.logger import get_logger

log = get_logger(__name__)


class UserLookup(Protocol):
    async def get_user(self, user_id: int) -> User: ...


def close_from(exc: ConnectionClosed) -> Close:
    """Close event for a finished socket. reason is None only when no close frame arrived."""
    frame = exc.rcvd
    return Close(reason=frame.reason if frame is not None else None)


class EventDispatcher:
    """
    Applies gateway events to ChatState.

    `ws` needs the recv() surface of a websockets client connection; the
    dispatcher never writes to it.
    """

    def __init__(self, ws: Any, state: ChatState, users: UserLookup):
        self._ws = ws
        self._state = state
        self._users = users

    async def run(self) -> Close:
        """Consume frames until the socket closes."""
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed as e:
                close = close_from(e)
                log.info("gateway.closed", reason=close.reason, code=getattr(e.rcvd, "code", None))
                return close

            if not isinstance(raw, str):
                continue
            try:
                event = decode(raw)
            except FrameDecodeError as e:
                log.debug("gateway.bad_frame", error=str(e))
                continue

            close = await self.handle(event)
            if close is not None:
                return close

    async def handle(self, event: InboundEvent) -> Optional[Close]:
        """Apply one event. Returns the event itself if it ends the connection."""
        if isinstance(event, MessageCreated):
            self._on_message(event)
        elif isinstance(event, Authenticated):
            self._state.notice("Authenticated with the gateway!")
            self._state.seed_users(event.self_user, event.online_users)
            log.info("gateway.authenticated", online=len(event.online_users) + 1)
        elif isinstance(event, UserUpdated):
            self._state.upsert_user(event.user)
        elif isinstance(event, PresenceUpdated):
            await self._on_presence(event)
        elif isinstance(event, Close):
            return event
        else:
            log.debug("gateway.event.ignored", frame=type(event).__name__)
        return None

    def _on_message(self, event: MessageCreated) -> None:
        message = event.message
        if not self._state.is_focused():
            self._state.notify(f"New message from {message.author}", message.content)
        self._state.append_message(message)

    async def _on_presence(self, event: PresenceUpdated) -> None:
        # Handles OFFLINE (removal) and known users in place.
        if self._state.update_status(event.user_id, event.status):
            return

        try:
            user = await self._users.get_user(event.user_id)
        except UserLookupError as e:
            self._state.notice(f"Could not get user {event.user_id}: {e}", error=True)
            log.warning("gateway.presence.lookup_failed", user_id=event.user_id, error=str(e))
            return
        self._state.upsert_user(user.model_copy(update={"status": event.status}))
