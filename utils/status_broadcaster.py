from typing import Optional

import datetime
import logging

import socketio

from utils.states import ConnectionState, Severity

STATUS_EVENT = 'connection_status'

log = logging.getLogger(__name__)


class StatusBroadcaster:
    """
    Keeps the latest connection status and pushes every change to browser clients.
    """
    def __init__(self, socketio_instance: Optional[socketio.AsyncServer] = None):
        self._sio = socketio_instance
        self.message: str = 'Unknown'
        self.severity: str = Severity.INFO.value
        self.state: str = ConnectionState.UNKNOWN.value
        self.timestamp: datetime.datetime = datetime.datetime.now(datetime.timezone.utc)

    async def __call__(self, message: str, severity: str, state: str = None) -> None:
        await self.broadcast(message, severity, state)

    async def broadcast(self, message: str, severity: str, state: str = None) -> None:
        self.message = message
        self.severity = severity
        if state is not None:
            self.state = state
        self.timestamp = datetime.datetime.now(datetime.timezone.utc)
        log.info(f'Connection status: {message} ({severity})')

        if self._sio is not None:
            await self._sio.emit(STATUS_EVENT, self.to_dict())

    async def send_current(self, sid: str) -> None:
        if self._sio is not None:
            await self._sio.emit(STATUS_EVENT, self.to_dict(), to=sid)

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'severity': self.severity,
            'state': self.state,
            'timestamp': self.timestamp.isoformat()
        }
