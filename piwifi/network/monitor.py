"""
WiFi uplink connectivity monitor.

ConnectivityMonitor polls the uplink every 30 seconds and, when the link is
down and credentials are stored, reconnects with a saturating backoff of
5, 10, 20 and 30 seconds. It runs as one asyncio task that stop() ends
cleanly. The credential cell it reads is written only by an explicit
connect request.
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from .. import const
from ..core.history import ConnectionHistory
from ..errors import ExternalToolError, PiWifiError
from .models import WifiCredentials
from .wifi import WifiManager

logger = logging.getLogger(__name__)


class LinkState(str, Enum):
    """Uplink states as seen by the monitor."""

    DISCONNECTED = "disconnected"  # down, nothing to reconnect with
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class CredentialStore:
    """Holds at most one set of uplink credentials behind a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._credentials: Optional[WifiCredentials] = None

    def set(self, credentials: WifiCredentials) -> None:
        with self._lock:
            self._credentials = credentials
        logger.info(f"WiFi credentials stored for auto-reconnect: '{credentials.ssid}'")

    def get(self) -> Optional[WifiCredentials]:
        with self._lock:
            return self._credentials

    def clear(self) -> None:
        with self._lock:
            self._credentials = None

    @property
    def ssid(self) -> Optional[str]:
        credentials = self.get()
        return credentials.ssid if credentials else None


class ConnectivityMonitor:
    """Polls the uplink and drives reconnection with backoff.

    Args:
        wifi: Uplink manager used for status queries and reconnects
        credentials: Shared credential cell
        history: Optional log that receives reconnect outcomes and session lengths
        poll_interval: Seconds between status polls
        backoff: Delays before successive reconnect attempts; the last repeats
        clock: Monotonic time source used for session lengths
    """

    def __init__(
        self,
        wifi: WifiManager,
        credentials: CredentialStore,
        history: Optional[ConnectionHistory] = None,
        poll_interval: float = const.WIFI_POLL_INTERVAL,
        backoff: Sequence[float] = const.RECONNECT_BACKOFF,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not backoff:
            raise ValueError("backoff table must not be empty")
        self.wifi = wifi
        self.credentials = credentials
        self.history = history
        self.poll_interval = poll_interval
        self.backoff = tuple(backoff)
        self.clock = clock

        self.state = LinkState.DISCONNECTED
        self.backoff_index = 0
        self.was_connected = False
        self._session_ssid: Optional[str] = None
        self._session_start: Optional[float] = None

        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def next_delay(self) -> float:
        return self.backoff[self.backoff_index]

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if stop was requested meanwhile."""
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _begin_session(self, ssid: Optional[str]) -> None:
        self._session_ssid = ssid
        self._session_start = self.clock()

    def _end_session(self) -> None:
        if self._session_ssid and self._session_start is not None and self.history is not None:
            duration = int(self.clock() - self._session_start)
            self.history.record_disconnection(self._session_ssid, duration)
        self._session_ssid = None
        self._session_start = None

    def _advance_backoff(self) -> None:
        self.backoff_index = min(self.backoff_index + 1, len(self.backoff) - 1)

    async def poll_once(self) -> LinkState:
        """Run one observation and, if needed, one reconnect attempt."""
        try:
            status = await self.wifi.status()
        except ExternalToolError as e:
            logger.warning(f"WiFi status check failed: {e}")
            return self.state

        if status.connected:
            if not self.was_connected:
                logger.info(f"WiFi connected to '{status.ssid}' ({status.ip})")
                self.backoff_index = 0
                self._begin_session(status.ssid)
            self.was_connected = True
            self.state = LinkState.CONNECTED
            return self.state

        if self.was_connected:
            logger.warning("WiFi connection lost")
            self._end_session()
            self.was_connected = False

        # Copy out under the store's lock; the reconnect below is slow
        credentials = self.credentials.get()
        if credentials is None:
            logger.debug("WiFi disconnected and no stored credentials; staying idle")
            self.state = LinkState.DISCONNECTED
            return self.state

        self.state = LinkState.RECONNECTING
        delay = self.next_delay
        logger.info(f"Reconnecting to '{credentials.ssid}' in {delay:g}s (attempt {self.backoff_index + 1})")
        if await self._wait(delay):
            return self.state

        try:
            await self.wifi.connect(credentials)
        except PiWifiError as e:
            self._advance_backoff()
            logger.warning(f"Reconnect to '{credentials.ssid}' failed: {e}; next attempt in {self.next_delay:g}s")
            if self.history is not None:
                self.history.record_failure(credentials.ssid, str(e))
            return self.state

        logger.info(f"Reconnected to '{credentials.ssid}'")
        self.backoff_index = 0
        self.was_connected = True
        self.state = LinkState.CONNECTED
        self._begin_session(credentials.ssid)
        if self.history is not None:
            self.history.record_success(credentials.ssid)
        return self.state

    async def run(self) -> None:
        """Poll until stop() is called."""
        logger.info(f"WiFi monitor started (poll every {self.poll_interval:g}s)")
        while not await self._wait(self.poll_interval):
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"WiFi monitor cycle failed: {e}", exc_info=True)
        logger.info("WiFi monitor stopped")

    def start(self) -> asyncio.Task:
        """Spawn the monitor task on the running event loop."""
        if self.running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name="wifi-monitor")
        return self._task

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
