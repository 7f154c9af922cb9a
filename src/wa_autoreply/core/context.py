"""Handles shared by the dashboard and the message handler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from wa_autoreply.core.stats import MessageStats
from wa_autoreply.core.switch import AutoReplySwitch

if TYPE_CHECKING:
    from wa_autoreply.config import AppConfig
    from wa_autoreply.core.controller import SessionController
    from wa_autoreply.services.service_manager import ServiceManager
    from wa_autoreply.storage.history import ConversationStore


@dataclass
class BotContext:
    """One bot instance: everything the outer surfaces may read or command."""

    config: AppConfig
    controller: SessionController
    store: ConversationStore
    switch: AutoReplySwitch
    stats: MessageStats = field(default_factory=MessageStats)
    completion_enabled: bool = False
    services: ServiceManager | None = None
