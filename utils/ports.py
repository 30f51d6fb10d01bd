import socket
import logging
from typing import Iterable, List

from utils.errors import PortUnavailable

log = logging.getLogger(__name__)


def _family(host: str) -> int:
    return socket.AF_INET6 if ':' in host else socket.AF_INET


def build_candidates(preferred: int, fallbacks: Iterable[int] = ()) -> List[int]:
    """
    Builds the ordered list of ports to try, preferred port first.

    Duplicates are dropped keeping the first occurrence.

    Raises:
        ValueError: If any port is outside 1-65535.
    """
    candidates = []
    for port in [preferred, *fallbacks]:
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ValueError(f'\'{port}\' is not a valid port.')
        if port not in candidates:
            candidates.append(port)
    return candidates


def is_port_available(port: int, host: str = 'localhost') -> bool:
    """Binds and immediately releases the port. True if the bind succeeded."""
    try:
        with socket.socket(_family(host), socket.SOCK_STREAM) as s:
            s.bind((host, port))
            s.listen(1)
    except OSError as e:
        log.debug(f'Port {port} unavailable: {e}')
        return False
    return True


def find_available_port(candidates: Iterable[int], host: str = 'localhost') -> int:
    """
    Returns the first port in candidates that can be bound.

    Ports are probed one after another in list order.

    Raises:
        PortUnavailable: If every candidate is already bound.
    """
    tried = []
    for port in candidates:
        tried.append(port)
        if is_port_available(port, host):
            log.debug(f'Port {port} is available.')
            return port
        log.info(f'Port {port} is busy.')
    raise PortUnavailable(tried)


def bind_listener(host: str, port: int) -> socket.socket:
    """
    Creates the server socket uvicorn listens on.

    Raises:
        OSError: If the port cannot be bound (errno EADDRINUSE when taken).
    """
    sock = socket.socket(_family(host), socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock
