"""Message counters shown on the dashboard."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class MessageStats:
    received: int = 0
    sent: int = 0
    ai_responses: int = 0
    fallback_responses: int = 0
    keyword_responses: int = 0
    send_failures: int = 0
    started_at: float = field(default_factory=time.time)

    def reset_responses(self) -> None:
        self.ai_responses = 0
        self.fallback_responses = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["uptime_seconds"] = int(time.time() - self.started_at)
        return data
