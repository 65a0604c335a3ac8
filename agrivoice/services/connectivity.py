"""Backend reachability monitor.

Probes ``GET /health`` once at startup and then on a fixed interval. Only
the latest result is kept; callers read ``is_reachable`` right before an
expendable network action and never cache it across an ``await``.
"""

import logging
from datetime import UTC, datetime

from agrivoice.core.models import ConnectivityState
from agrivoice.services.api.client import BackendClient
from agrivoice.services.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Keeps a single shared reachable/unreachable flag up to date.

    Args:
        client: Backend client used for the health probe.
        scheduler: Scheduler that owns the polling timer.
        interval: Seconds between probes (default 15.0).
    """

    def __init__(self, client: BackendClient, scheduler: Scheduler, interval: float = 15.0) -> None:
        self._client = client
        self._scheduler = scheduler
        self._interval = interval
        self._state = ConnectivityState()
        self._handle: TimerHandle | None = None

    @property
    def is_reachable(self) -> bool:
        return self._state.reachable

    @property
    def state(self) -> ConnectivityState:
        return self._state.model_copy()

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.active

    async def check(self) -> bool:
        """Probe the backend now and record the result."""
        reachable = await self._client.check_connection()
        if reachable != self._state.reachable:
            logger.info("Backend %s", "online" if reachable else "offline")
        self._state = ConnectivityState(reachable=reachable, last_checked_at=datetime.now(UTC))
        return reachable

    async def start(self) -> None:
        """Probe once immediately, then keep polling in the background."""
        if self.running:
            return
        await self.check()
        self._handle = self._scheduler.call_every(self._interval, self.check, name="connectivity-poll")

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
