"""
gateway/protocol.py — Gateway WebSocket Frame Protocol

Typed frame schema for all client↔server communication on the gateway.
Every frame is a JSON object with an `op` field. Server payload fields sit
next to `op`, or inside a `d` object on servers that use adjacent tagging;
both forms decode to the same events.

Inbound frames decode to exactly one event dataclass. Unknown ops decode to
`Unknown` so newer servers don't break older clients; frames that are not
JSON or don't match their op's schema raise FrameDecodeError.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from parley.exceptions import FrameDecodeError


# ─────────────────────────────────────────────────────────────────────────────
# Ops
# ─────────────────────────────────────────────────────────────────────────────

class Op(str, Enum):
    """All op codes the client understands."""

    # Server → Client
    HELLO            = "HELLO"
    RATE_LIMIT       = "RATE_LIMIT"
    AUTHENTICATED    = "AUTHENTICATED"
    MESSAGE_CREATE   = "MESSAGE_CREATE"
    USER_UPDATE      = "USER_UPDATE"
    PRESENCE_UPDATE  = "PRESENCE_UPDATE"

    # Client → Server
    AUTHENTICATE     = "AUTHENTICATE"
    PING             = "PING"


# ─────────────────────────────────────────────────────────────────────────────
# Records carried inside frames
# ─────────────────────────────────────────────────────────────────────────────

class StatusType(str, Enum):
    ONLINE  = "ONLINE"
    OFFLINE = "OFFLINE"
    IDLE    = "IDLE"
    BUSY    = "BUSY"


class Status(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: StatusType
    text: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @property
    def is_offline(self) -> bool:
        return self.type is StatusType.OFFLINE


def _coerce_status(v: Any) -> Any:
    # Some servers send the bare status type instead of an object.
    if isinstance(v, str):
        return {"type": v}
    return v


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    username: str
    display_name: Optional[str] = None
    status: Status = Field(default_factory=lambda: Status(type=StatusType.ONLINE))

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Any:
        return _coerce_status(v)

    @property
    def name(self) -> str:
        return self.display_name or self.username

    @property
    def is_offline(self) -> bool:
        return self.status.is_offline


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    author: str
    content: str

    @field_validator("author", mode="before")
    @classmethod
    def _author_name(cls, v: Any) -> Any:
        # Newer servers embed the full author object.
        if isinstance(v, dict):
            return v.get("display_name") or v.get("username")
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Inbound events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Hello:
    heartbeat_interval: int  # milliseconds


@dataclass(frozen=True)
class RateLimit:
    wait_ms: int


@dataclass(frozen=True)
class Authenticated:
    self_user: User
    online_users: tuple[User, ...] = ()


@dataclass(frozen=True)
class MessageCreated:
    message: Message


@dataclass(frozen=True)
class UserUpdated:
    user: User


@dataclass(frozen=True)
class PresenceUpdated:
    user_id: int
    status: Status


@dataclass(frozen=True)
class Close:
    """Transport-level close. reason is "" for a close frame without text, None when the stream just ended."""
    reason: Optional[str] = None


@dataclass(frozen=True)
class Unknown:
    op: str


InboundEvent = Union[
    Hello,
    RateLimit,
    Authenticated,
    MessageCreated,
    UserUpdated,
    PresenceUpdated,
    Close,
    Unknown,
]


# ─────────────────────────────────────────────────────────────────────────────
# Outbound events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Authenticate:
    token: str

    def to_json(self) -> str:
        return json.dumps({"op": Op.AUTHENTICATE.value, "token": self.token})


@dataclass(frozen=True)
class Ping:
    def to_json(self) -> str:
        return json.dumps({"op": Op.PING.value})


OutboundEvent = Union[Authenticate, Ping]


def encode(event: OutboundEvent) -> str:
    """Serialize an outbound event to a JSON text frame."""
    return event.to_json()


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────

def _int_field(body: dict[str, Any], key: str, *, minimum: int) -> int:
    value = body[key]
    # bool is an int subclass; true/false is never a valid duration or id
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{key}' must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise ValueError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def _decode_body(op: str, body: dict[str, Any]) -> InboundEvent:
    if op == Op.HELLO.value:
        return Hello(heartbeat_interval=_int_field(body, "heartbeat_interval", minimum=1))

    if op == Op.RATE_LIMIT.value:
        return RateLimit(wait_ms=_int_field(body, "wait", minimum=0))

    if op == Op.AUTHENTICATED.value:
        users = body.get("users")
        if users is None:
            users = []
        if not isinstance(users, list):
            raise TypeError("'users' must be a list")
        return Authenticated(
            self_user=User.model_validate(body["user"]),
            online_users=tuple(User.model_validate(u) for u in users),
        )

    if op == Op.MESSAGE_CREATE.value:
        return MessageCreated(message=Message.model_validate(body))

    if op == Op.USER_UPDATE.value:
        return UserUpdated(user=User.model_validate(body))

    if op == Op.PRESENCE_UPDATE.value:
        return PresenceUpdated(
            user_id=_int_field(body, "user_id", minimum=0),
            status=Status.model_validate(_coerce_status(body["status"])),
        )

    return Unknown(op=op)


def decode(raw: str | bytes) -> InboundEvent:
    """
    Parse one text frame into an inbound event.

    Raises:
        FrameDecodeError: the frame is not JSON, has no string `op`, or its
                          payload does not match the op's schema.
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FrameDecodeError(f"frame is not valid JSON: {e}", raw=raw) from e

    if not isinstance(payload, dict):
        raise FrameDecodeError("frame is not a JSON object", raw=raw)

    op = payload.get("op")
    if not isinstance(op, str):
        raise FrameDecodeError("frame has no 'op' field", raw=raw)

    body = payload.get("d")
    if not isinstance(body, dict):
        body = payload

    try:
        return _decode_body(op, body)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise FrameDecodeError(f"malformed {op} frame: {e}", raw=raw) from e
