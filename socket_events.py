import logging

import socketio

from utils.status_broadcaster import StatusBroadcaster

log = logging.getLogger(__name__)


def register_socketio(socketio_instance: socketio.AsyncServer,
                      broadcaster: StatusBroadcaster):
    """
    Registers the Socket.IO handlers that keep browsers in sync with the connection status.
    """

    @socketio_instance.on('connect')
    async def handle_connect(sid, environ):
        log.info(f'Client \'{sid}\' connected.')
        await broadcaster.send_current(sid)

    @socketio_instance.on('disconnect')
    async def handle_disconnect(sid, reason=None):
        log.info(f'Client \'{sid}\' disconnected, reason: {reason}')

    @socketio_instance.on('get_status')
    async def handle_get_status(sid, data=None):
        log.debug(f'Recieved get_status from client \'{sid}\'.')
        await broadcaster.send_current(sid)
