import os
import logging

DEFAULT_LOG_LEVEL = 'INFO'

log_level = os.environ.get('LOG_LEVEL', DEFAULT_LOG_LEVEL).upper()

if log_level not in logging._nameToLevel:
    log_level = DEFAULT_LOG_LEVEL

logging.basicConfig(
    format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
    level=log_level,
    datefmt='%Y-%m-%d %H:%M:%S',
)

import sys
import errno
import signal
import socket
import asyncio
from contextlib import asynccontextmanager
from typing import Tuple

import uvicorn
import socketio
from fastapi import FastAPI

from utils.config import Config, ServerConfig
from utils.errors import PortUnavailable
from utils.ports import bind_listener, build_candidates, find_available_port
from utils.http_client import create_session
from utils.status_broadcaster import StatusBroadcaster
from objects.log_buffer import LogBuffer
from monitor.liveness_monitor import LivenessMonitor
from api_routes import register_api_routes
from static_routes import register_fixed_headers, register_static_routes
from socket_events import register_socketio

CATEGORY = 'Server'

ALTERNATIVES = [
    'Use VS Code Live Server extension',
    'Run: python -m http.server 8000',
    'Run: php -S localhost:8080',
    'Install live-server: npm install -g live-server && live-server',
]

log = logging.getLogger('main')


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Runs inside uvicorn's shutdown, after connections are drained.
    monitor = getattr(app.state, 'monitor', None)
    if monitor is not None:
        await monitor.stop()
    session = getattr(app.state, 'session', None)
    if session is not None and not session.closed:
        await session.close()


def create_app(server_config: ServerConfig,
               log_buffer: LogBuffer,
               broadcaster: StatusBroadcaster,
               export_dir: str = '.') -> FastAPI:
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.monitor = None
    app.state.session = None

    register_fixed_headers(app, server_config)
    register_api_routes(app, log_buffer, broadcaster, export_dir)
    # Catch-all file route goes last
    register_static_routes(app, server_config, log_buffer)
    return app


def bind_server_socket(config: Config, log_buffer: LogBuffer) -> Tuple[socket.socket, int]:
    """
    Resolves a free port and binds it, re-resolving when the port is taken in between.

    Raises:
        PortUnavailable: If no port could be bound within config.max_start_attempts attempts.
        OSError: On bind failures other than EADDRINUSE.
    """
    candidates = build_candidates(config.port, config.fallback_ports)

    for attempt in range(1, config.max_start_attempts + 1):
        port = find_available_port(candidates, config.host)
        try:
            sock = bind_listener(config.host, port)
        except OSError as e:
            if e.errno != errno.EADDRINUSE:
                raise
            log_buffer.log_warning(
                CATEGORY,
                f'Port {port} is already in use. Trying another port... ({attempt}/{config.max_start_attempts})'
            )
            continue
        return sock, port

    raise PortUnavailable(candidates, f'Could not bind a port after {config.max_start_attempts} attempts')


def base_url(host: str, port: int) -> str:
    if host in ('', '0.0.0.0'):
        host = '127.0.0.1'
    elif host == '::':
        host = '::1'
    if ':' in host:
        host = f'[{host}]'
    return f'http://{host}:{port}/'


def create_exception_handler(log_buffer: LogBuffer):
    def handle_exception(loop, context):
        exception = context.get('exception')
        message = context.get('message', 'Unhandled exception')
        if exception is not None:
            message = f'{message}: {exception.__class__.__name__}: {exception}'
        log_buffer.log_error('Unhandled Task Exception', message)
    return handle_exception


async def start_monitor_when_ready(server: uvicorn.Server, monitor: LivenessMonitor):
    while not server.started:
        if server.should_exit:
            return
        await asyncio.sleep(.1)
    monitor.start()


async def serve(config: Config) -> None:
    log_buffer = LogBuffer(
        persist_path=config.logs_persist_path,
        max_entries=config.logs_max_entries,
        persist_entries=config.logs_persist_entries,
        log_to_console=config.logs_console,
        persist_delay=config.logs_persist_delay
    )
    log_buffer.load_previous()
    asyncio.get_running_loop().set_exception_handler(create_exception_handler(log_buffer))

    sio = socketio.AsyncServer(
        async_mode='asgi',
        cors_allowed_origins='*')
    broadcaster = StatusBroadcaster(sio)
    register_socketio(sio, broadcaster)

    server_config = config.server
    app = create_app(server_config, log_buffer, broadcaster, config.logs_export_dir)
    asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)

    sock, port = bind_server_socket(config, log_buffer)
    url = base_url(config.host, port)

    log.info(f'Server running at {url}')
    log.info(f'Serving files from: {os.path.abspath(server_config.root)}')
    log.info(f'Home page: {url}{server_config.index}')
    log.info(f'Port: {port}, CORS: {"Enabled" if server_config.cors else "Disabled"}, '
             f'Cache: {"Enabled" if server_config.cache else "Disabled"}')
    log.info('Press Ctrl+C to stop the server')

    uvicorn_config = uvicorn.Config(asgi_app,
                                    host=config.host,
                                    port=port,
                                    log_config=None,
                                    log_level=None,
                                    access_log=False,
                                    timeout_graceful_shutdown=config.graceful_shutdown_timeout)
    uvicorn_server = uvicorn.Server(uvicorn_config)

    starter = None
    if config.monitor_enabled:
        session = create_session(log_buffer,
                                 timeout=config.monitor_probe_timeout,
                                 user_agent=config.monitor_user_agent)
        monitor = LivenessMonitor(
            config.monitor_url or url,
            session,
            log_buffer,
            on_status=broadcaster,
            interval=config.monitor_interval,
            max_reconnect_attempts=config.monitor_max_reconnect_attempts,
            reconnect_delay=config.monitor_reconnect_delay,
            backoff_factor=config.monitor_backoff_factor,
            max_reconnect_delay=config.monitor_max_reconnect_delay,
            common_ports=config.monitor_common_ports,
            connectivity_urls=config.monitor_connectivity_urls,
            user_agent=config.monitor_user_agent
        )
        app.state.session = session
        app.state.monitor = monitor
        starter = asyncio.create_task(start_monitor_when_ready(uvicorn_server, monitor))

    try:
        await uvicorn_server.serve(sockets=[sock])
    finally:
        log.info('Shutting down server...')
        if starter is not None and not starter.done():
            starter.cancel()
        sock.close()
        log_buffer.flush()
        log.info('Server stopped')


def _handle_sigterm(signum, frame):
    raise SystemExit(0)


def run():
    signal.signal(signal.SIGTERM, _handle_sigterm)
    config = Config()
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    except (PortUnavailable, OSError) as e:
        log.critical(f'Failed to start server: {e}')
        log.info('Alternative options:')
        for number, option in enumerate(ALTERNATIVES, start=1):
            log.info(f'   {number}. {option}')
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    run()
