"""
gateway/ — Real-time Gateway Client

Keeps a WebSocket connection to the chat server alive: handshake, heartbeat,
event dispatch into the shared ChatState, and reconnect with backoff.

The presentation layer only touches ChatState; everything here runs as one
asyncio task started with GatewaySupervisor.run().
"""

from parley.gateway.protocol import InboundEvent, Message, Op, Status, StatusType, User
from parley.gateway.state import ChatState, LogEntry, Style, SystemNotice
from parley.gateway.notifications import LogNotificationSink, NotificationSink
from parley.gateway.rest import InstanceInfo, RestClient, submit_message
from parley.gateway.supervisor import GatewaySupervisor

__all__ = [
    "InboundEvent",
    "Message",
    "Op",
    "Status",
    "StatusType",
    "User",
    "ChatState",
    "LogEntry",
    "Style",
    "SystemNotice",
    "LogNotificationSink",
    "NotificationSink",
    "InstanceInfo",
    "RestClient",
    "submit_message",
    "GatewaySupervisor",
]
