import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from objects.log_buffer import LogBuffer
from utils.exporter import export_filename
from utils.states import LogLevel
from utils.status_broadcaster import StatusBroadcaster

log = logging.getLogger(__name__)


def _attachment(document, prefix: str) -> JSONResponse:
    filename = export_filename(prefix)
    return JSONResponse(document, headers={'Content-Disposition': f'attachment; filename="{filename}"'})


def _get_monitor(request: Request):
    monitor = getattr(request.app.state, 'monitor', None)
    if monitor is None:
        raise HTTPException(status_code=503, detail='Connection monitor is not running.')
    return monitor


def register_api_routes(app_instance: FastAPI,
                        log_buffer: LogBuffer,
                        broadcaster: StatusBroadcaster,
                        export_dir: str = '.'):
    """
    Registers the health, status, diagnostics and log API routes.

    Export routes answer with a JSON download, or write the document into
    export_dir when called with save=true.
    """

    @app_instance.get('/api/v1/health')
    async def get_health():
        return 'I\'m healthy!'

    @app_instance.get('/api/v1/status')
    async def get_status(request: Request):
        monitor = getattr(request.app.state, 'monitor', None)
        return {
            'status': broadcaster.to_dict(),
            'monitor': monitor.to_dict() if monitor is not None else None
        }

    @app_instance.get('/api/v1/diagnostics')
    async def get_diagnostics(request: Request, save: bool = False):
        monitor = _get_monitor(request)
        if save:
            return {'path': await monitor.export_diagnostics(export_dir)}
        diagnostics = await monitor.run_diagnostics()
        return _attachment(diagnostics, 'connection-diagnostics')

    @app_instance.get('/api/v1/connectivity')
    async def get_connectivity(request: Request):
        monitor = _get_monitor(request)
        return {'results': await monitor.test_connectivity()}

    @app_instance.get('/api/v1/logs')
    async def get_logs(level: Optional[str] = None):
        if level is not None and level.upper() not in LogLevel.__members__:
            raise HTTPException(status_code=400, detail=f'Unknown log level \'{level}\'.')
        logs = log_buffer.to_list(level)
        return {'count': len(logs), 'logs': logs}

    @app_instance.get('/api/v1/logs/export')
    async def export_logs(save: bool = False):
        if save:
            return {'path': log_buffer.export(export_dir)}
        return _attachment(log_buffer.to_list(), 'error-logs')

    @app_instance.delete('/api/v1/logs')
    async def clear_logs():
        log_buffer.clear()
        log.info('Log buffer cleared via API.')
        return {'cleared': True}
