import os
import html
import errno
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, Response

from objects.log_buffer import LogBuffer
from utils.config import NO_CACHE_HEADERS, ServerConfig

CATEGORY = 'Static Server'
METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'DELETE', 'OPTIONS']
# Lookup failures meaning the file cannot exist
NOT_FOUND_ERRNOS = (errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG, errno.ELOOP)

NOT_FOUND_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <title>404 - File Not Found</title>
    <style>
        body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; }}
        .error {{ color: #e74c3c; }}
        .back-link {{ margin-top: 20px; }}
        .back-link a {{ color: #3498db; text-decoration: none; }}
    </style>
</head>
<body>
    <h1 class="error">404 - File Not Found</h1>
    <p>The requested file <code>{path}</code> was not found.</p>
    <div class="back-link">
        <a href="/{index}">&larr; Back to Home</a>
    </div>
</body>
</html>
'''

log = logging.getLogger(__name__)


def resolve_path(server_config: ServerConfig, request_path: str) -> Optional[Path]:
    """
    Maps a request path to a file under the root directory.

    Returns:
        Optional[Path]: The resolved path, or None if it escapes the root directory.
    """
    if '\x00' in request_path:
        return None

    root = Path(server_config.root).resolve()
    relative = request_path.lstrip('/')
    if relative == '':
        relative = server_config.index

    try:
        candidate = (root / relative).resolve()
    except (OSError, ValueError):
        return None
    if candidate != root and root not in candidate.parents:
        return None

    try:
        if candidate.is_dir():
            candidate = candidate / server_config.index
    except OSError:
        # Left to the file lookup, which tells missing from unreadable
        pass

    return candidate


def open_file_stat(file_path: Path) -> os.stat_result:
    """Checks the file can be opened for reading and returns its stat."""
    with open(file_path, 'rb') as f:
        return os.fstat(f.fileno())


def not_found_response(server_config: ServerConfig, request_path: str) -> HTMLResponse:
    body = NOT_FOUND_TEMPLATE.format(
        path=html.escape(request_path),
        index=html.escape(server_config.index, quote=True)
    )
    return HTMLResponse(body, status_code=404, headers={'Content-Type': 'text/html'})


def server_error_response(log_buffer: LogBuffer, request_path: str, error: OSError) -> PlainTextResponse:
    log_buffer.log_error(CATEGORY, f'File read error: {error}', {'path': request_path})
    return PlainTextResponse('Internal Server Error', status_code=500, headers={'Content-Type': 'text/plain'})


def register_fixed_headers(app_instance: FastAPI, server_config: ServerConfig):
    """Adds the CORS and security headers to every response."""
    fixed_headers = server_config.response_headers()

    @app_instance.middleware('http')
    async def add_fixed_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in fixed_headers.items():
            response.headers[name] = value
        return response


def register_static_routes(app_instance: FastAPI,
                           server_config: ServerConfig,
                           log_buffer: LogBuffer):
    """
    Registers the catch-all file route. Must be registered after every other route.
    """

    @app_instance.api_route('/{path:path}', methods=METHODS, include_in_schema=False)
    def serve_file(path: str, request: Request):
        # Plain def: FastAPI runs it in the threadpool, keeping file I/O off the event loop.
        request_path = request.url.path

        if request.method == 'OPTIONS':
            return Response(status_code=200)

        file_path = resolve_path(server_config, request_path)
        if file_path is None:
            log.warning(f'Rejected path outside root: \'{request_path}\'')
            return not_found_response(server_config, request_path)

        try:
            is_file = file_path.is_file()
        except OSError as e:
            if e.errno not in NOT_FOUND_ERRNOS:
                return server_error_response(log_buffer, request_path, e)
            is_file = False

        if not is_file:
            log.debug(f'File not found: \'{request_path}\'')
            return not_found_response(server_config, request_path)

        try:
            stat_result = open_file_stat(file_path)
        except OSError as e:
            return server_error_response(log_buffer, request_path, e)

        headers = {'Content-Type': server_config.content_type(file_path.suffix)}
        if not server_config.cache:
            headers.update(NO_CACHE_HEADERS)

        return FileResponse(file_path, headers=headers, stat_result=stat_result)
