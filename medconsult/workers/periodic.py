"""
Periodic background tasks and their supervisor

Each PeriodicTask runs a synchronous tick in the default thread executor on a
fixed interval until its stop event is set. The supervisor owns the daemons of
one process and starts or stops them one by one or all together.
"""

import asyncio
import logging
from functools import partial
from typing import Callable, Optional

from ..config import (
    CLEANUP_INTERVAL_SECONDS,
    REMINDER_INTERVAL_SECONDS,
    SESSION_TIMER_INTERVAL_SECONDS,
)
from .reminders import run_cleanup_tick, run_reminder_tick
from .session_timer import run_session_timer_tick

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval: float, tick: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.tick = tick
        self.ticks = 0
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Must be called from a running event loop"""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")

    async def stop(self) -> None:
        if not self.running:
            return
        self._stop.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        logger.info(f"🚀 Starting {self.name} (every {self.interval}s)")
        loop = asyncio.get_running_loop()

        while not self._stop.is_set():
            try:
                await loop.run_in_executor(None, self.tick)
            except Exception as e:
                logger.error(f"❌ Error in {self.name} tick: {e}")
            self.ticks += 1

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"👋 {self.name} stopped")


class DaemonSupervisor:
    def __init__(self, tasks: list[PeriodicTask]):
        self.tasks = {task.name: task for task in tasks}

    def start(self, name: Optional[str] = None) -> None:
        for task in self._select(name):
            task.start()

    async def stop(self, name: Optional[str] = None) -> None:
        for task in self._select(name):
            await task.stop()

    def _select(self, name: Optional[str]) -> list[PeriodicTask]:
        if name is None:
            return list(self.tasks.values())
        if name not in self.tasks:
            raise KeyError(f"Unknown background task: {name}")
        return [self.tasks[name]]


def build_supervisor(collaborators) -> DaemonSupervisor:
    """Session timer, reminders and cleanup wired to the shared collaborators"""
    session_factory = collaborators.session_factory
    return DaemonSupervisor(
        [
            PeriodicTask(
                "session-timer",
                SESSION_TIMER_INTERVAL_SECONDS,
                partial(run_session_timer_tick, session_factory, collaborators.notifications, collaborators.chat),
            ),
            PeriodicTask(
                "appointment-reminders",
                REMINDER_INTERVAL_SECONDS,
                partial(run_reminder_tick, session_factory, collaborators.notifications),
            ),
            PeriodicTask(
                "unpaid-booking-cleanup",
                CLEANUP_INTERVAL_SECONDS,
                partial(run_cleanup_tick, session_factory),
            ),
        ]
    )
