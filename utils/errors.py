from typing import Iterable


class LiveServeError(Exception):
    """Base class for server errors."""


class PortUnavailable(LiveServeError):
    """
    Raised when no candidate port can be bound.
    """
    def __init__(self, ports: Iterable[int], message: str = None):
        self.ports = list(ports)
        if message is None:
            message = f'No available ports found (tried: {", ".join(str(p) for p in self.ports)})'
        super().__init__(message)


NoPortAvailable = PortUnavailable
