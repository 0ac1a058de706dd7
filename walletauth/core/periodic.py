from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from walletauth.core.errors import WalletAuthError
from walletauth.core.session_store import SessionStore

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs `fn` every `interval_sec` in a single asyncio task until stopped.

    A failing run is logged and the loop keeps going: a WalletAuthError as a
    warning, anything else with its traceback. Only cancellation (stop) ends
    it, between or during runs.
    """

    def __init__(self, name: str, interval_sec: float, fn: Callable[[], Awaitable[Any]]):
        self.name = name
        self.interval_sec = interval_sec
        self.fn = fn
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Periodic task %s started interval=%ss", self.name, self.interval_sec)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Periodic task %s ended with an error", self.name)
        self._task = None
        logger.info("Periodic task %s stopped", self.name)

    async def run_once(self) -> Any:
        try:
            return await self.fn()
        except WalletAuthError as e:
            logger.warning("Periodic task %s failed: %s", self.name, e)
        except Exception:
            # CancelledError is not an Exception and still ends the loop
            logger.exception("Periodic task %s crashed", self.name)
        return None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            await self.run_once()


class Reconciler(PeriodicTask):
    def __init__(self, store: SessionStore, interval_sec: float = 300):
        super().__init__("session-reconciler", interval_sec, store.run_reconciliation)
        self.store = store
