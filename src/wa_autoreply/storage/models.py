"""Data models for storage layer."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from wa_autoreply.core.types import Role


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    role: Role
    content: str
    timestamp: int = field(default_factory=now_millis)  # epoch millis

    def to_dict(self) -> dict[str, Any]:
        return {"role": str(self.role), "content": self.content, "timestamp": self.timestamp}

    def to_turn(self) -> dict[str, str]:
        """Role/content pair used for prompt construction."""
        return {"role": str(self.role), "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            role=Role(data["role"]),
            content=str(data["content"]),
            timestamp=int(data.get("timestamp", 0)),
        )
