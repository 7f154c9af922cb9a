"""APScheduler-based periodic history persistence."""

from __future__ import annotations

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wa_autoreply.log import get_logger
from wa_autoreply.services.base import Service
from wa_autoreply.storage.history import ConversationStore

logger = get_logger(__name__)

PERSIST_JOB_ID = "persist_history"


class HistoryScheduler(Service):
    """Saves the conversation store on a fixed interval once the session is ready."""

    service_name = "scheduler"

    def __init__(self, store: ConversationStore, interval: float):
        self._store = store
        self._interval = interval
        self._scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        self._scheduler.start()
        logger.info("scheduler_started", persist_interval=self._interval)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    def schedule_persistence(self) -> None:
        """Register the interval job; calling it again keeps a single job."""
        self._scheduler.add_job(
            self._persist_job,
            IntervalTrigger(seconds=self._interval),
            id=PERSIST_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("persistence_scheduled", interval=self._interval)

    async def _persist_job(self) -> None:
        # Coroutine jobs run on the event loop, never concurrently with appends.
        self._store.persist()

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "next_run_time": str(job.next_run_time) if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]
