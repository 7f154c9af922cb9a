"""On-disk WhatsApp credential material (session database / auth folder)."""

from __future__ import annotations

import shutil
from pathlib import Path

from wa_autoreply.log import get_logger

logger = get_logger(__name__)


class CredentialStore:
    """Owns the directory where the messaging client keeps its pairing keys."""

    def __init__(self, auth_dir: str | Path):
        self._auth_dir = Path(auth_dir)

    @property
    def auth_dir(self) -> Path:
        return self._auth_dir

    def ensure(self) -> Path:
        self._auth_dir.mkdir(parents=True, exist_ok=True)
        return self._auth_dir

    def has_credentials(self) -> bool:
        return self._auth_dir.is_dir() and any(self._auth_dir.iterdir())

    def wipe(self) -> None:
        """Delete every persisted credential file. Safe when nothing exists."""
        if not self._auth_dir.exists():
            return
        shutil.rmtree(self._auth_dir)
        logger.info("credentials_wiped", auth_dir=str(self._auth_dir))
