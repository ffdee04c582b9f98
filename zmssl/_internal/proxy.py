"""Frees the HTTP-01 challenge port from the platform proxy and gives it back."""
import dataclasses
import errno
import logging
import socket
from typing import Callable

from zmssl import errors
from zmssl._internal.tools import ToolGateway

logger = logging.getLogger(__name__)


def port_is_free(port: int, listenaddr: str = "") -> bool:
    """Could a server bind TCP port right now?

    :raises errors.PreconditionError: if binding is not permitted at all

    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((listenaddr, port))
    except OSError as error:
        if error.errno == errno.EADDRINUSE:
            return False
        if error.errno == errno.EACCES:
            raise errors.PreconditionError(
                "Could not bind TCP port {0} because you don't have the appropriate "
                "permissions (for example, you aren't running this program as "
                "root).".format(port))
        raise
    finally:
        sock.close()
    return True


@dataclasses.dataclass
class ProxyGuardState:
    """Whether the guard stopped the proxy, and whether it was restarted."""
    intervened: bool = False
    restored: bool = False


class ProxyGuard:
    """Stops the platform proxy when it holds the challenge port.

    Only a proxy the guard stopped itself is started again, so the
    proxy ends up as it was found. `restore_if_intervened` must run on
    every way out of a run once `ensure_port_free` was called.

    """
    def __init__(self, gateway: ToolGateway, port: int,
                 is_free: Callable[[int], bool] = port_is_free) -> None:
        self.gateway = gateway
        self.port = port
        self._is_free = is_free
        self.state = ProxyGuardState()

    def ensure_port_free(self) -> ProxyGuardState:
        """Make sure the challenge port can be bound.

        :raises errors.ExternalToolError: if the proxy cannot be stopped
        :raises errors.PreconditionError: if the port is still taken after
            stopping the proxy

        """
        if self._is_free(self.port):
            logger.debug("Port %d is free", self.port)
            return self.state

        logger.info("Port %d is in use, stopping the proxy", self.port)
        self.gateway.service("proxy", "stop").raise_for_status()
        self.state.intervened = True
        if not self._is_free(self.port):
            raise errors.PreconditionError(
                "Port {0} is still in use after stopping the proxy; stop the "
                "program holding it and try again".format(self.port))
        return self.state

    def restore_if_intervened(self) -> None:
        """Start the proxy again if the guard stopped it.

        Calling it more than once starts the proxy at most once.

        :raises errors.ExternalToolError: if the proxy fails to start

        """
        if not self.state.intervened or self.state.restored:
            return
        self.state.restored = True
        logger.info("Starting the proxy again")
        self.gateway.service("proxy", "start").raise_for_status()
