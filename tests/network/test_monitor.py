"""
Unit tests for the ConnectivityMonitor and CredentialStore.

The WiFi manager is mocked; the monitor's wait is replaced where a test
needs to observe backoff delays without sleeping.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from piwifi.core.history import ConnectionHistory
from piwifi.errors import ExternalToolError
from piwifi.network.models import WifiCredentials, WifiStatus
from piwifi.network.monitor import ConnectivityMonitor, CredentialStore, LinkState

DISCONNECTED = WifiStatus(connected=False)
CONNECTED = WifiStatus(connected=True, ssid="HomeNet", ip="192.168.1.23")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_wifi():
    wifi = MagicMock()
    wifi.status = AsyncMock(return_value=DISCONNECTED)
    wifi.connect = AsyncMock(return_value=None)
    return wifi


@pytest.fixture
def credentials():
    store = CredentialStore()
    store.set(WifiCredentials("HomeNet", "password123"))
    return store


@pytest.fixture
def history():
    return ConnectionHistory()


@pytest.fixture
def monitor(mock_wifi, credentials, history):
    monitor = ConnectivityMonitor(mock_wifi, credentials, history)
    monitor._wait = AsyncMock(return_value=False)
    return monitor


def _tool_error():
    return ExternalToolError("nmcli", 4, "Secrets were required")


# =============================================================================
# CredentialStore
# =============================================================================


class TestCredentialStore:
    """Test the shared credential cell."""

    def test_set_get_clear(self):
        """Test storing and clearing credentials."""
        store = CredentialStore()
        assert store.get() is None
        assert store.ssid is None

        store.set(WifiCredentials("HomeNet", "password123"))
        assert store.ssid == "HomeNet"

        store.clear()
        assert store.get() is None

    def test_latest_write_wins(self):
        """Test that the most recent credentials replace earlier ones."""
        store = CredentialStore()
        store.set(WifiCredentials("First", "password123"))
        store.set(WifiCredentials("Second", "password456"))
        assert store.get() == WifiCredentials("Second", "password456")


# =============================================================================
# Reconnect state machine
# =============================================================================


class TestReconnect:
    """Test one observation at a time."""

    @pytest.mark.asyncio
    async def test_failed_then_successful_reconnect(self, monitor, mock_wifi, history):
        """Test a failed reconnect followed by a successful one."""
        mock_wifi.connect.side_effect = [_tool_error(), None]

        state = await monitor.poll_once()

        assert state == LinkState.RECONNECTING
        assert monitor.backoff_index == 1
        assert monitor.next_delay == 10
        monitor._wait.assert_awaited_with(5)

        state = await monitor.poll_once()

        assert state == LinkState.CONNECTED
        assert monitor.backoff_index == 0
        monitor._wait.assert_awaited_with(10)
        entries = history.all()
        assert [entry.success for entry in entries] == [True, False]
        assert entries[1].disconnection_reason is not None

    @pytest.mark.asyncio
    async def test_backoff_is_monotonic_and_clamped(self, monitor, mock_wifi):
        """Test that backoff delays grow and stop at the last step."""
        mock_wifi.connect.side_effect = _tool_error()

        indices = []
        for _ in range(7):
            await monitor.poll_once()
            indices.append(monitor.backoff_index)

        assert indices == [1, 2, 3, 3, 3, 3, 3]
        assert monitor.next_delay == 30
        assert [call.args[0] for call in monitor._wait.await_args_list] == [5, 10, 20, 30, 30, 30, 30]

    @pytest.mark.asyncio
    async def test_observed_connection_resets_backoff(self, monitor, mock_wifi):
        """Test that seeing a connection resets the backoff schedule."""
        mock_wifi.connect.side_effect = _tool_error()
        await monitor.poll_once()
        await monitor.poll_once()
        assert monitor.backoff_index == 2

        mock_wifi.status.return_value = CONNECTED
        state = await monitor.poll_once()

        assert state == LinkState.CONNECTED
        assert monitor.backoff_index == 0

    @pytest.mark.asyncio
    async def test_no_credentials_stays_idle(self, monitor, mock_wifi, credentials):
        """Test that the monitor does nothing without stored credentials."""
        credentials.clear()

        state = await monitor.poll_once()

        assert state == LinkState.DISCONNECTED
        mock_wifi.connect.assert_not_awaited()
        monitor._wait.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_error_keeps_state(self, monitor, mock_wifi):
        """Test that a failed status read reports disconnected without attempting to connect."""
        mock_wifi.status.side_effect = _tool_error()

        state = await monitor.poll_once()

        assert state == LinkState.DISCONNECTED
        mock_wifi.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_duration_recorded_on_drop(self, mock_wifi, credentials, history):
        """Test that a drop records the session length."""
        now = [100.0]
        monitor = ConnectivityMonitor(mock_wifi, credentials, history, clock=lambda: now[0])
        monitor._wait = AsyncMock(return_value=False)
        credentials.clear()
        history.record_success("HomeNet")

        mock_wifi.status.return_value = CONNECTED
        await monitor.poll_once()
        now[0] = 160.0
        mock_wifi.status.return_value = DISCONNECTED
        state = await monitor.poll_once()

        assert state == LinkState.DISCONNECTED
        assert history.all()[0].duration_seconds == 60

    @pytest.mark.asyncio
    async def test_stop_during_backoff_skips_attempt(self, monitor, mock_wifi):
        """Test that stopping during backoff skips the pending attempt."""
        monitor._wait = AsyncMock(return_value=True)

        state = await monitor.poll_once()

        assert state == LinkState.RECONNECTING
        mock_wifi.connect.assert_not_awaited()

    def test_empty_backoff_rejected(self, mock_wifi, credentials):
        """Test that an empty backoff schedule is rejected."""
        with pytest.raises(ValueError):
            ConnectivityMonitor(mock_wifi, credentials, backoff=())


# =============================================================================
# Task lifecycle
# =============================================================================


class TestLifecycle:
    """Test starting and stopping the background task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_wifi, credentials):
        """Test starting and stopping the monitor task."""
        mock_wifi.status.return_value = CONNECTED
        monitor = ConnectivityMonitor(mock_wifi, credentials, poll_interval=0.01)

        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.05)
        await asyncio.wait_for(monitor.stop(), timeout=1.0)

        assert not monitor.running
        assert mock_wifi.status.await_count >= 1
        assert monitor.state == LinkState.CONNECTED

    @pytest.mark.asyncio
    async def test_stop_interrupts_backoff_wait(self, mock_wifi, credentials):
        """Test that stop returns promptly during a backoff wait."""
        monitor = ConnectivityMonitor(mock_wifi, credentials, poll_interval=0.01, backoff=(60,))

        monitor.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(monitor.stop(), timeout=1.0)

        assert monitor.state == LinkState.RECONNECTING
        mock_wifi.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_task(self, mock_wifi, credentials):
        """Test that a second start reuses the running task."""
        monitor = ConnectivityMonitor(mock_wifi, credentials, poll_interval=10)

        first = monitor.start()
        second = monitor.start()

        assert first is second
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, mock_wifi, credentials):
        """Test that stop before start is harmless."""
        monitor = ConnectivityMonitor(mock_wifi, credentials)
        await monitor.stop()
        assert not monitor.running
