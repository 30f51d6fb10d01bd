from __future__ import annotations

import asyncio
import datetime
import logging
import platform
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING
from urllib.parse import urlsplit

import aiohttp

from objects.probe_result import ProbeResult
from utils.exporter import export_json
from utils.states import ConnectionState, Severity

if TYPE_CHECKING:
    from objects.log_buffer import LogBuffer

CATEGORY = 'Connection Monitor'

CHECK_INTERVAL = 10.0
MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 2.0
BACKOFF_FACTOR = 1.5
MAX_RECONNECT_DELAY = 30.0
COMMON_PORTS = [3000, 5000, 5500, 8000, 8080, 8888, 9000]

# Probe failures that mean the target could not be reached at all
PROBE_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)

StatusListener = Callable[[str, str, str], Awaitable[None]]
Prober = Callable[[], Awaitable[ProbeResult]]

log = logging.getLogger(__name__)


async def probe_url(session: aiohttp.ClientSession, url: str) -> ProbeResult:
    """Sends a HEAD request to url and reports whether anything answered."""
    start = time.monotonic()
    try:
        async with session.head(url, allow_redirects=False) as response:
            return ProbeResult(
                target=url,
                reachable=True,
                status=response.status,
                reason=response.reason,
                latency_ms=(time.monotonic() - start) * 1000
            )
    except PROBE_ERRORS as e:
        return ProbeResult(
            target=url,
            reachable=False,
            latency_ms=(time.monotonic() - start) * 1000,
            error=str(e) or e.__class__.__name__
        )


class LivenessMonitor:
    """
    Watches an HTTP endpoint and reconnects with exponential backoff when it goes away.

    The periodic check and the reconnect sequence run as separate tasks. Only one
    reconnect sequence exists at a time: a check that finds the monitor already
    reconnecting is skipped.
    """
    def __init__(self,
                 url: str,
                 session: aiohttp.ClientSession,
                 log_buffer: 'LogBuffer',
                 on_status: Optional[StatusListener] = None,
                 interval: float = CHECK_INTERVAL,
                 max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
                 reconnect_delay: float = RECONNECT_DELAY,
                 backoff_factor: float = BACKOFF_FACTOR,
                 max_reconnect_delay: float = MAX_RECONNECT_DELAY,
                 common_ports: Optional[List[int]] = None,
                 connectivity_urls: Optional[List[str]] = None,
                 user_agent: str = 'liveserve-monitor',
                 prober: Optional[Prober] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.url: str = url
        self._session = session
        self._log_buffer = log_buffer
        self._on_status = on_status
        self._prober = prober
        self._sleep = sleep

        self.interval: float = interval
        self.max_reconnect_attempts: int = max_reconnect_attempts
        self.initial_reconnect_delay: float = reconnect_delay
        self.backoff_factor: float = backoff_factor
        self.max_reconnect_delay: float = max_reconnect_delay
        self.common_ports: List[int] = list(common_ports if common_ports is not None else COMMON_PORTS)
        self.connectivity_urls: List[str] = list(connectivity_urls or [])
        self.user_agent: str = user_agent

        self.state: ConnectionState = ConnectionState.UNKNOWN
        self.reconnect_attempts: int = 0
        self.reconnect_delay: float = reconnect_delay
        self.current_port: Optional[int] = urlsplit(url).port
        self.last_probe: Optional[ProbeResult] = None

        self._monitoring: bool = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # --- Logging ---

    def _log_info(self, message: str, data: Any = None) -> None:
        self._log_buffer.log_info(CATEGORY, message, data)

    def _log_warning(self, message: str, data: Any = None) -> None:
        self._log_buffer.log_warning(CATEGORY, message, data)

    def _log_error(self, message: str, data: Any = None) -> None:
        self._log_buffer.log_error(CATEGORY, message, data)

    # --- State ---

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def reconnect_task(self) -> Optional[asyncio.Task]:
        return self._reconnect_task

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            self._log_info(f'Connection state: {self.state.value} -> {state.value}')
            self.state = state

    def _reset_backoff(self) -> None:
        self.reconnect_attempts = 0
        self.reconnect_delay = self.initial_reconnect_delay

    async def _show_status(self, message: str, severity: Severity) -> None:
        if self._on_status is None:
            return
        try:
            await self._on_status(message, severity.value, self.state.value)
        except Exception as e:
            log.error(f'Failed to publish connection status: {e}')

    # --- Probing ---

    async def probe(self) -> ProbeResult:
        if self._prober is not None:
            result = await self._prober()
        else:
            result = await probe_url(self._session, self.url)
        self.last_probe = result
        return result

    async def test_connection(self) -> bool:
        """
        Probes the target once and updates the connection state.

        Returns:
            bool: True when the target answered with a 2xx status.
        """
        result = await self.probe()

        if result.ok:
            was_connected = self.state == ConnectionState.CONNECTED
            self._set_state(ConnectionState.CONNECTED)
            self._reset_backoff()
            self._log_info('Live server connection: OK')
            if not was_connected:
                await self._show_status('Connected', Severity.SUCCESS)
            return True

        if result.reachable:
            self._set_state(ConnectionState.ERROR)
            self._log_error(f'Live server connection failed: {result.status} {result.reason or ""}'.rstrip())
            await self._show_status(f'Server responded {result.status}', Severity.ERROR)
            return False

        self._set_state(ConnectionState.DISCONNECTED)
        self._log_error(f'Live server connection error: {result.error}')
        return False

    async def check(self) -> bool:
        """
        Runs one monitoring tick.

        Starts a reconnect sequence when the target is unreachable. Does nothing
        while a reconnect sequence is already running.
        """
        if self.state == ConnectionState.RECONNECTING:
            log.debug('Reconnect in progress. Skipping check.')
            return False

        connected = await self.test_connection()

        if not connected and self.state == ConnectionState.DISCONNECTED:
            # State is set before the task is scheduled so the next tick sees it.
            self._set_state(ConnectionState.RECONNECTING)
            self._reconnect_task = asyncio.create_task(self.attempt_reconnection())

        return connected

    async def attempt_reconnection(self) -> bool:
        """
        Retries the probe with exponential backoff until it succeeds or attempts run out.

        Attempt n waits reconnect_delay * backoff_factor^(n-1) seconds, capped at
        max_reconnect_delay, before probing.

        Returns:
            bool: True if the connection came back.
        """
        try:
            return await self._reconnect()
        except Exception as e:
            # Checks are skipped while reconnecting, so the state must not stay there
            log.critical(f'Encountered critical error while reconnecting: {e}')
            self._set_state(ConnectionState.ERROR)
            self._log_error(f'Reconnection aborted: {e.__class__.__name__}: {e}')
            await self._show_status('Connection lost. Please restart the live server.', Severity.ERROR)
            return False

    async def _reconnect(self) -> bool:
        self._set_state(ConnectionState.RECONNECTING)
        self._reset_backoff()
        await self._show_status('Reconnecting...', Severity.WARNING)

        while self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            self._log_info(f'Attempting reconnection {self.reconnect_attempts}/{self.max_reconnect_attempts}...')

            await self._sleep(self.reconnect_delay)

            result = await self.probe()
            if result.ok:
                self._set_state(ConnectionState.CONNECTED)
                self._reset_backoff()
                self._log_info('Reconnection successful!')
                await self._show_status('Connected', Severity.SUCCESS)
                return True

            detail = f'status {result.status}' if result.reachable else result.error
            self._log_warning(f'Reconnection attempt {self.reconnect_attempts} failed: {detail}')
            self.reconnect_delay = min(self.reconnect_delay * self.backoff_factor, self.max_reconnect_delay)

        self._set_state(ConnectionState.ERROR)
        self._log_error('Max reconnection attempts reached. Please restart the live server.')
        await self._show_status('Connection lost. Please restart the live server.', Severity.ERROR)
        return False

    # --- Lifecycle ---

    async def _monitor_loop(self) -> None:
        while self._monitoring:
            try:
                await self.check()
            except Exception as e:
                log.critical(f'Encountered critical error while checking connection: {e}')
            await self._sleep(self.interval)

    def start(self) -> Optional[asyncio.Task]:
        """Schedules the monitoring loop on the running event loop."""
        if self._monitoring:
            return self._monitor_task

        self._monitoring = True
        self._log_info('Starting connection monitoring...')
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        return self._monitor_task

    async def stop(self) -> None:
        self._monitoring = False
        for task in (self._monitor_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._monitor_task = None
        self._reconnect_task = None
        self._log_info('Connection monitoring stopped')

    # --- Diagnostics ---

    async def check_port(self, port: int) -> Dict[str, Any]:
        host = urlsplit(self.url).hostname or 'localhost'
        result = await probe_url(self._session, f'http://{host}:{port}/')
        if result.reachable:
            return {'port': port, 'available': True, 'status': 'accessible'}
        return {'port': port, 'available': False, 'status': 'inaccessible', 'error': result.error}

    async def scan_common_ports(self) -> List[Dict[str, Any]]:
        self._log_info('Scanning common development ports...')
        results = []
        for port in self.common_ports:
            result = await self.check_port(port)
            results.append(result)
            if result['available']:
                self._log_info(f'Port {port}: Available')
            else:
                self._log_warning(f'Port {port}: {result["status"]} - {result["error"]}')
        return results

    async def test_connectivity(self) -> List[Dict[str, Any]]:
        """Checks each configured external URL and records its response time."""
        results = []
        for url in self.connectivity_urls:
            result = await probe_url(self._session, url)
            if result.reachable:
                response_time = round(result.latency_ms)
                results.append({'url': url, 'status': 'success', 'responseTime': response_time})
                self._log_info(f'{url} - OK ({response_time}ms)')
            else:
                results.append({'url': url, 'status': 'failed', 'error': result.error})
                self._log_error(f'{url} - Failed: {result.error}')
        return results

    async def _is_online(self) -> bool:
        host = urlsplit(self.url).hostname
        if not host:
            return False
        try:
            await asyncio.get_running_loop().getaddrinfo(host, None)
        except OSError:
            return False
        return True

    async def run_diagnostics(self) -> Dict[str, Any]:
        """
        Collects a diagnostics snapshot.

        The connectivity probe here does not change the connection state, so it
        is safe to run while a reconnect sequence is in flight.
        """
        self._log_info('Running connection diagnostics...')

        port_scan = await self.scan_common_ports()
        connectivity = await self.probe()

        diagnostics = {
            'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
            'currentUrl': self.url,
            'currentPort': self.current_port,
            'connectionStatus': self.state.value,
            'userAgent': f'{self.user_agent} (Python {platform.python_version()}; aiohttp {aiohttp.__version__})',
            'onlineStatus': await self._is_online(),
            'portScan': port_scan,
            'connectivityTest': connectivity.ok
        }

        self._log_info('Diagnostics completed', diagnostics)
        return diagnostics

    async def export_diagnostics(self, directory: str) -> str:
        diagnostics = await self.run_diagnostics()
        return export_json(diagnostics, directory, 'connection-diagnostics')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'currentPort': self.current_port,
            'connectionStatus': self.state.value,
            'monitoring': self._monitoring,
            'reconnectAttempts': self.reconnect_attempts,
            'maxReconnectAttempts': self.max_reconnect_attempts,
            'reconnectDelay': self.reconnect_delay,
            'lastProbe': self.last_probe.to_dict() if self.last_probe else None
        }
