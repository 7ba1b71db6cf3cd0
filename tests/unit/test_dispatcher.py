"""
tests/unit/test_dispatcher.py — Event Dispatcher Tests

Covers each inbound event's effect on ChatState, user lookup for unknown
presence updates (success and failure), and how the read loop ends.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from parley.exceptions import UserLookupError
from parley.gateway.dispatcher import EventDispatcher
from parley.gateway.protocol import (
    Authenticated,
    Close,
    Message,
    MessageCreated,
    PresenceUpdated,
    Status,
    StatusType,
    Unknown,
    UserUpdated,
)
from parley.gateway.state import ChatState, Style

from gateway_fakes import FakeSocket, RecordingSink, make_user, user_json


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def state(sink):
    return ChatState("Kayla", sink)


@pytest.fixture
def users():
    lookup = AsyncMock()
    lookup.get_user = AsyncMock()
    return lookup


def _dispatcher(state, users, ws=None):
    return EventDispatcher(ws or FakeSocket(), state, users)


def _status(kind: str) -> Status:
    return Status(type=StatusType(kind))


# ── MESSAGE_CREATE ────────────────────────────────────────────────────────────

class TestMessages:
    @pytest.mark.asyncio
    async def test_highlighted_when_mentioned(self, state, users):
        await _dispatcher(state, users).handle(
            MessageCreated(Message(author="ava", content="hey kAyLa!"))
        )
        [entry] = state.snapshot_log()
        assert entry.style is Style.HIGHLIGHT

    @pytest.mark.asyncio
    async def test_not_highlighted_otherwise(self, state, users):
        await _dispatcher(state, users).handle(
            MessageCreated(Message(author="ava", content="hey K-ayla!"))
        )
        [entry] = state.snapshot_log()
        assert entry.style is Style.DEFAULT

    @pytest.mark.asyncio
    async def test_no_notification_when_focused(self, state, users, sink):
        await _dispatcher(state, users).handle(MessageCreated(Message(author="ava", content="x")))
        assert sink.shown == []

    @pytest.mark.asyncio
    async def test_notifies_when_unfocused(self, state, users, sink):
        state.set_focused(False)
        d = _dispatcher(state, users)
        await d.handle(MessageCreated(Message(author="ava", content="first")))
        await d.handle(MessageCreated(Message(author="ben", content="second")))

        assert sink.shown == [("New message from ava", "first")]
        assert sink.updated == [(1, "New message from ben", "second")]
        assert len(state.snapshot_log()) == 2


# ── AUTHENTICATED / USER_UPDATE ───────────────────────────────────────────────

class TestUsers:
    @pytest.mark.asyncio
    async def test_authenticated_seeds_map(self, state, users):
        event = Authenticated(make_user(1, "kayla"), (make_user(2, "ava"), make_user(3, "ben")))
        await _dispatcher(state, users).handle(event)

        assert set(state.snapshot_users()) == {1, 2, 3}
        [entry] = state.snapshot_log()
        assert "Authenticated" in str(entry)
        assert entry.style is Style.SUCCESS

    @pytest.mark.asyncio
    async def test_user_update_upserts(self, state, users):
        d = _dispatcher(state, users)
        await d.handle(UserUpdated(make_user(2, "ava")))
        await d.handle(UserUpdated(make_user(2, "ava2", "IDLE")))
        assert state.get_user(2).username == "ava2"

    @pytest.mark.asyncio
    async def test_offline_user_update_not_inserted(self, state, users):
        await _dispatcher(state, users).handle(UserUpdated(make_user(2, "ava", "OFFLINE")))
        assert 2 not in state.snapshot_users()


# ── PRESENCE_UPDATE ───────────────────────────────────────────────────────────

class TestPresence:
    @pytest.mark.asyncio
    async def test_offline_removes(self, state, users):
        state.upsert_user(make_user(2, "ava"))
        await _dispatcher(state, users).handle(PresenceUpdated(2, _status("OFFLINE")))
        assert 2 not in state.snapshot_users()
        users.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_for_absent_user_is_noop(self, state, users):
        await _dispatcher(state, users).handle(PresenceUpdated(99, _status("OFFLINE")))
        assert state.snapshot_users() == {}
        assert state.snapshot_log() == []
        users.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_known_user_updated_in_place(self, state, users):
        state.upsert_user(make_user(2, "ava"))
        await _dispatcher(state, users).handle(PresenceUpdated(2, _status("BUSY")))
        assert state.get_user(2).status.type is StatusType.BUSY
        users.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_user_is_fetched(self, state, users):
        users.get_user.return_value = make_user(5, "zed", "OFFLINE")
        await _dispatcher(state, users).handle(PresenceUpdated(5, _status("IDLE")))

        users.get_user.assert_awaited_once_with(5)
        user = state.get_user(5)
        assert user.username == "zed"
        assert user.status.type is StatusType.IDLE

    @pytest.mark.asyncio
    async def test_lookup_failure_becomes_notice(self, state, users):
        users.get_user.side_effect = UserLookupError(5, "Unknown user", status=404)
        await _dispatcher(state, users).handle(PresenceUpdated(5, _status("ONLINE")))

        assert 5 not in state.snapshot_users()
        [entry] = state.snapshot_log()
        assert str(entry) == "Could not get user 5: Unknown user"
        assert entry.style is Style.ERROR


# ── Read loop ────────────────────────────────────────────────────────────────

class TestRun:
    @pytest.mark.asyncio
    async def test_close_with_reason(self, state, users):
        ws = FakeSocket(
            {"op": "MESSAGE_CREATE", "author": "ava", "content": "hi"},
        ).push_close("kicked", code=4000)
        close = await _dispatcher(state, users, ws).run()
        assert close == Close(reason="kicked")
        assert [str(e) for e in state.snapshot_log()] == ["[ava]: hi"]

    @pytest.mark.asyncio
    async def test_close_frame_with_empty_reason(self, state, users):
        ws = FakeSocket().push_close("")
        assert await _dispatcher(state, users, ws).run() == Close(reason="")

    @pytest.mark.asyncio
    async def test_end_of_stream(self, state, users):
        ws = FakeSocket({"op": "USER_UPDATE", **user_json(3, "ben")})
        assert await _dispatcher(state, users, ws).run() == Close(reason=None)
        assert 3 in state.snapshot_users()

    @pytest.mark.asyncio
    async def test_bad_and_unknown_frames_are_skipped(self, state, users):
        ws = FakeSocket(
            "{not json",
            b"\x00binary",
            {"op": "TYPING_START", "user_id": 1},
            {"op": "MESSAGE_CREATE", "author": "ava"},
            {"op": "MESSAGE_CREATE", "author": "ava", "content": "kept"},
        ).push_eof()
        await _dispatcher(state, users, ws).run()
        assert [str(e) for e in state.snapshot_log()] == ["[ava]: kept"]

    @pytest.mark.asyncio
    async def test_unknown_event_handled_as_noop(self, state, users):
        assert await _dispatcher(state, users).handle(Unknown("NEW_OP")) is None
        assert state.snapshot_log() == []

    @pytest.mark.asyncio
    async def test_dispatcher_never_writes(self, state, users):
        ws = FakeSocket({"op": "MESSAGE_CREATE", "author": "ava", "content": "hi"})
        await _dispatcher(state, users, ws).run()
        assert ws.sent == []
