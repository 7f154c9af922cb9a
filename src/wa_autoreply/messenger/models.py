"""Message models exchanged with the messaging client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    chat_id: str  # raw address replies are sent to
    contact_id: str  # normalized sender address, history key
    text: str
    from_self: bool = False
    is_broadcast: bool = False
    is_group: bool = False
    sender_name: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str
