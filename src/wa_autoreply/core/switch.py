"""Process-wide auto-reply on/off flag."""

from __future__ import annotations

import asyncio

from wa_autoreply.log import get_logger

logger = get_logger(__name__)


class AutoReplySwitch:
    """Toggleable flag that also wakes replies waiting out their typing delay."""

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._disabled = asyncio.Event()
        if not enabled:
            self._disabled.set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set(self, enabled: bool) -> None:
        self._enabled = enabled
        if enabled:
            self._disabled.clear()
        else:
            self._disabled.set()
        logger.info("auto_reply_toggled", enabled=enabled)

    def toggle(self) -> bool:
        self.set(not self._enabled)
        return self._enabled

    async def wait(self, delay: float) -> bool:
        """Sleep *delay* seconds; return False early if switched off meanwhile."""
        if not self._enabled:
            return False
        if delay <= 0:
            return True
        try:
            await asyncio.wait_for(self._disabled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return self._enabled
        return False
