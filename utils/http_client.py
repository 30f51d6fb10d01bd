from typing import TYPE_CHECKING

import asyncio
import logging

import aiohttp

if TYPE_CHECKING:
    from objects.log_buffer import LogBuffer

REQUEST_CATEGORY = 'Outbound Request'

log = logging.getLogger(__name__)


def create_trace_config(log_buffer: 'LogBuffer') -> aiohttp.TraceConfig:
    """
    Builds a TraceConfig that records failed outbound requests into the log buffer.

    Non-ok responses (status >= 400) are recorded as warnings, transport failures as errors.
    """
    async def on_request_end(session, trace_config_ctx, params: aiohttp.TraceRequestEndParams):
        response = params.response
        log.debug(f'{params.method} {params.url} -> {response.status}')
        if not response.ok:
            log_buffer.log_warning(
                REQUEST_CATEGORY,
                f'Fetch failed: {params.url} - {response.status} {response.reason}'
            )

    async def on_request_exception(session, trace_config_ctx, params: aiohttp.TraceRequestExceptionParams):
        error = params.exception
        if isinstance(error, asyncio.CancelledError):
            return
        log_buffer.log_error(
            REQUEST_CATEGORY,
            f'Fetch error: {params.url} - {error.__class__.__name__}: {error}'
        )

    trace_config = aiohttp.TraceConfig()
    trace_config.on_request_end.append(on_request_end)
    trace_config.on_request_exception.append(on_request_exception)
    return trace_config


def create_session(log_buffer: 'LogBuffer',
                   timeout: float = 5.0,
                   user_agent: str = None) -> aiohttp.ClientSession:
    """
    Creates the ClientSession every outbound call is routed through.

    Must be called from within a running event loop.
    """
    headers = {'Cache-Control': 'no-cache'}
    if user_agent:
        headers['User-Agent'] = user_agent
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers=headers,
        trace_configs=[create_trace_config(log_buffer)],
    )
