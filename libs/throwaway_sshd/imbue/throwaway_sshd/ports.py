import socket

from imbue.throwaway_sshd.errors import PortReservationError
from imbue.throwaway_sshd.primitives import Port


def reserve_port(bind_host: str = "") -> Port:
    """Ask the OS for a free TCP port and release it right away so that sshd can bind it.

    This is best-effort: another process may grab the port between the release here and
    the daemon's own bind. Holding the socket open would keep sshd from binding it.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((bind_host, 0))
            return Port(s.getsockname()[1])
    except OSError as e:
        raise PortReservationError(f"Could not reserve a TCP port on {bind_host or '*'}: {e}") from e


def is_port_open(port: int, host: str = "127.0.0.1", timeout: float = 1.0) -> bool:
    """Check if a port is open and accepting connections."""
    try:
        # getaddrinfo rejects int subclasses such as Port.
        with socket.create_connection((host, int(port)), timeout=timeout):
            return True
    except OSError:
        return False
