"""Where committed appointment changes go: straight to the notifier, or onto the arq queue"""

import asyncio
import logging

from .change_feed import AppointmentChange
from .notifier import AppointmentNotifier

logger = logging.getLogger(__name__)

NOTIFY_TASK_NAME = "notify_appointment_change_task"


class InlineDispatcher:
    """Runs the notifier in the committing thread (worker process and tests)"""

    def __init__(self, notifier: AppointmentNotifier):
        self.notifier = notifier

    def __call__(self, change: AppointmentChange) -> None:
        self.notifier.handle(change)


class QueueDispatcher:
    """Enqueues a notifier job per change without blocking the request"""

    def __init__(self):
        self._pool = None
        self._tasks: set = set()

    async def _get_pool(self):
        if self._pool is None:
            from arq import create_pool

            from ...worker import get_redis_settings

            self._pool = await create_pool(get_redis_settings())
        return self._pool

    async def _enqueue(self, change: AppointmentChange) -> None:
        try:
            pool = await self._get_pool()
            job = await pool.enqueue_job(NOTIFY_TASK_NAME, change.to_payload())
            logger.info(
                f"📤 Queued {change.kind} notification for appointment {change.appointment_id}"
                f" (job {job.job_id if job else 'duplicate'})"
            )
        except Exception as e:
            logger.error(
                f"❌ Failed to queue {change.kind} notification for appointment "
                f"{change.appointment_id}: {e}"
            )

    async def _enqueue_once(self, change: AppointmentChange) -> None:
        try:
            await self._enqueue(change)
        finally:
            await self.close()

    def __call__(self, change: AppointmentChange) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Committed from a worker thread; use a short-lived pool
            asyncio.run(self._enqueue_once(change))
            return
        task = loop.create_task(self._enqueue(change))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
