import os
import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional

CONFIG_PATH = os.environ.get('CONFIG_PATH', 'config.json')

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 5500
DEFAULT_FALLBACK_PORTS = [3000, 5000, 8000, 8080, 8888, 9000]
DEFAULT_COMMON_PORTS = [3000, 5000, 5500, 8000, 8080, 8888, 9000]
DEFAULT_CONNECTIVITY_URLS = [
    'https://www.google.com/favicon.ico',
    'https://cdn.jsdelivr.net/npm/face-api.js@0.22.2/dist/face-api.min.js',
    'https://fonts.googleapis.com/css2?family=Baloo+2:wght@400;700&display=swap',
]

MIME_TYPES = {
    '.html': 'text/html',
    '.css': 'text/css',
    '.js': 'application/javascript',
    '.json': 'application/json',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.svg': 'image/svg+xml',
    '.ico': 'image/x-icon',
    '.woff': 'font/woff',
    '.woff2': 'font/woff2',
    '.ttf': 'font/ttf',
    '.eot': 'application/vnd.ms-fontobject',
}

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'X-XSS-Protection': '1; mode=block',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
}

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, PUT, DELETE, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization',
}

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerConfig:
    """Static file server settings. Shared read-only between requests."""
    host: str = DEFAULT_HOST
    root: str = '.'
    index: str = 'home.html'
    cors: bool = True
    cache: bool = False
    mime_types: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(MIME_TYPES)))
    security_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(SECURITY_HEADERS)))
    cors_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(CORS_HEADERS)))

    def content_type(self, suffix: str) -> str:
        return self.mime_types.get(suffix.lower(), 'application/octet-stream')

    def response_headers(self) -> dict:
        headers = {}
        if self.cors:
            headers.update(self.cors_headers)
        headers.update(self.security_headers)
        return headers


def _valid_port(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535


def _valid_positive(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class Config:
    def __init__(self, path: str = None, environ: Mapping[str, str] = None):
        path = path or CONFIG_PATH
        environ = os.environ if environ is None else environ

        self.host: str = DEFAULT_HOST
        self.port: int = DEFAULT_PORT
        self.fallback_ports: List[int] = list(DEFAULT_FALLBACK_PORTS)
        self.root: str = '.'
        self.index: str = 'home.html'
        self.cors: bool = True
        self.cache: bool = False
        self.max_start_attempts: int = 3
        self.graceful_shutdown_timeout: float = 5.0

        self.monitor_enabled: bool = True
        self.monitor_url: Optional[str] = None
        self.monitor_interval: float = 10.0
        self.monitor_max_reconnect_attempts: int = 5
        self.monitor_reconnect_delay: float = 2.0
        self.monitor_backoff_factor: float = 1.5
        self.monitor_max_reconnect_delay: float = 30.0
        self.monitor_probe_timeout: float = 5.0
        self.monitor_common_ports: List[int] = list(DEFAULT_COMMON_PORTS)
        self.monitor_connectivity_urls: List[str] = list(DEFAULT_CONNECTIVITY_URLS)
        self.monitor_user_agent: str = 'liveserve-monitor'

        self.logs_max_entries: int = 1000
        self.logs_persist_entries: int = 100
        self.logs_persist_path: str = 'error-logs.json'
        self.logs_persist_delay: float = 1.0
        self.logs_export_dir: str = '.'
        self.logs_console: bool = True

        config_data = {}

        if os.path.exists(path):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                log.info(f'Successfully loaded config file \'{path}\'.')
            except (OSError, ValueError) as e:
                log.critical(f'Failed to load config file: {e}')
        else:
            log.warning(f'Config file \'{path}\' not found. Using defaults.')

        if not isinstance(config_data, dict):
            log.critical('Config file must contain a JSON object. Using defaults.')
            config_data = {}

        # Load Server Config
        self.host = self._string(config_data.get('host'), self.host, 'host')
        self.port = self._port(config_data.get('port'), self.port, 'port')
        self.fallback_ports = self._port_list(config_data.get('fallbackPorts'), self.fallback_ports, 'fallbackPorts')
        self.root = self._string(config_data.get('root'), self.root, 'root')
        self.index = self._string(config_data.get('index'), self.index, 'index')
        self.cors = bool(config_data.get('cors', self.cors))
        self.cache = bool(config_data.get('cache', self.cache))
        self.max_start_attempts = self._count(config_data.get('maxStartAttempts'), self.max_start_attempts, 'maxStartAttempts')
        self.graceful_shutdown_timeout = self._positive(config_data.get('gracefulShutdownTimeout'), self.graceful_shutdown_timeout, 'gracefulShutdownTimeout')

        # Load Monitor Config
        monitor_conf = config_data.get('monitor', {})
        if not isinstance(monitor_conf, dict):
            log.error(f'Invalid monitor section \'{monitor_conf}\'. Using defaults.')
            monitor_conf = {}
        self.monitor_enabled = bool(monitor_conf.get('enabled', self.monitor_enabled))
        self.monitor_url = self._string(monitor_conf.get('url') or None, self.monitor_url, 'monitor.url')
        self.monitor_interval = self._positive(monitor_conf.get('interval'), self.monitor_interval, 'monitor.interval')
        self.monitor_max_reconnect_attempts = self._count(monitor_conf.get('maxReconnectAttempts'), self.monitor_max_reconnect_attempts, 'monitor.maxReconnectAttempts')
        self.monitor_reconnect_delay = self._positive(monitor_conf.get('reconnectDelay'), self.monitor_reconnect_delay, 'monitor.reconnectDelay')
        self.monitor_backoff_factor = self._positive(monitor_conf.get('backoffFactor'), self.monitor_backoff_factor, 'monitor.backoffFactor')
        self.monitor_max_reconnect_delay = self._positive(monitor_conf.get('maxReconnectDelay'), self.monitor_max_reconnect_delay, 'monitor.maxReconnectDelay')
        self.monitor_probe_timeout = self._positive(monitor_conf.get('probeTimeout'), self.monitor_probe_timeout, 'monitor.probeTimeout')
        self.monitor_common_ports = self._port_list(monitor_conf.get('commonPorts'), self.monitor_common_ports, 'monitor.commonPorts')
        self.monitor_connectivity_urls = self._string_list(monitor_conf.get('connectivityUrls'), self.monitor_connectivity_urls, 'monitor.connectivityUrls')
        self.monitor_user_agent = self._string(monitor_conf.get('userAgent'), self.monitor_user_agent, 'monitor.userAgent')

        # Load Log Buffer Config
        logs_conf = config_data.get('logs', {})
        if not isinstance(logs_conf, dict):
            log.error(f'Invalid logs section \'{logs_conf}\'. Using defaults.')
            logs_conf = {}
        self.logs_max_entries = self._count(logs_conf.get('maxEntries'), self.logs_max_entries, 'logs.maxEntries')
        self.logs_persist_entries = self._count(logs_conf.get('persistEntries'), self.logs_persist_entries, 'logs.persistEntries')
        self.logs_persist_path = self._string(logs_conf.get('persistPath'), self.logs_persist_path, 'logs.persistPath')
        self.logs_persist_delay = self._positive(logs_conf.get('persistDelay'), self.logs_persist_delay, 'logs.persistDelay')
        self.logs_export_dir = self._string(logs_conf.get('exportDir'), self.logs_export_dir, 'logs.exportDir')
        self.logs_console = bool(logs_conf.get('console', self.logs_console))

        # Environment overrides
        if environ.get('HOST'):
            self.host = environ['HOST']
        if environ.get('PORT'):
            try:
                self.port = self._port(int(environ['PORT']), self.port, 'PORT')
            except ValueError:
                log.error(f'Invalid PORT environment variable \'{environ["PORT"]}\'. Using {self.port}.')

    @staticmethod
    def _port(value, default: int, name: str) -> int:
        if value is None:
            return default
        if not _valid_port(value):
            log.error(f'Invalid {name} \'{value}\'. Using {default}.')
            return default
        return value

    @staticmethod
    def _port_list(value, default: List[int], name: str) -> List[int]:
        if value is None:
            return default
        if not isinstance(value, list) or not all(_valid_port(p) for p in value):
            log.error(f'Invalid {name} \'{value}\'. Using defaults.')
            return default
        return value

    @staticmethod
    def _string(value, default: str, name: str) -> str:
        if value is None:
            return default
        if not isinstance(value, str) or not value:
            log.error(f'Invalid {name} \'{value}\'. Using {default}.')
            return default
        return value

    @staticmethod
    def _string_list(value, default: List[str], name: str) -> List[str]:
        if value is None:
            return default
        if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
            log.error(f'Invalid {name} \'{value}\'. Using defaults.')
            return default
        return value

    @staticmethod
    def _count(value, default: int, name: str) -> int:
        if value is None:
            return default
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            log.error(f'Invalid {name} \'{value}\'. Using {default}.')
            return default
        return value

    @staticmethod
    def _positive(value, default: float, name: str) -> float:
        if value is None:
            return default
        if not _valid_positive(value):
            log.error(f'Invalid {name} \'{value}\'. Using {default}.')
            return default
        return float(value)

    @property
    def server(self) -> ServerConfig:
        return ServerConfig(
            host=self.host,
            root=self.root,
            index=self.index,
            cors=self.cors,
            cache=self.cache,
        )
