import os
import socket
from typing import List, Optional

import paramiko

from ubntssh.config import CONNECT_TIMEOUT, KEEPALIVE_INTERVAL
from ubntssh.errors import ConnectError


class TransportHandle:
    """One SSH transport pinned to a host/port/username.

    Constructing the handle does no network I/O; ``connect()`` opens the
    socket and runs the SSH handshake, the ``auth_*`` methods authenticate.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        connect_timeout: float = CONNECT_TIMEOUT,
        verify_host_key: bool = True,
        known_hosts_path: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.connect_timeout = connect_timeout
        self.verify_host_key = verify_host_key
        self.known_hosts_path = known_hosts_path or os.path.expanduser("~/.ssh/known_hosts")
        self.transport: Optional[paramiko.Transport] = None

    def connect(self) -> None:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as exc:
            raise ConnectError(f"connect to {self.host}:{self.port} failed: {exc}") from exc

        transport = paramiko.Transport(sock)
        self.transport = transport
        try:
            transport.start_client(timeout=self.connect_timeout)
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise ConnectError(f"ssh handshake with {self.host}:{self.port} failed: {exc}") from exc

        if self.verify_host_key:
            self._check_host_key(transport.get_remote_server_key())
        transport.set_keepalive(KEEPALIVE_INTERVAL)

    def _check_host_key(self, server_key: paramiko.PKey) -> None:
        host_keys = paramiko.HostKeys()
        if os.path.isfile(self.known_hosts_path):
            host_keys.load(self.known_hosts_path)

        lookup = self.host if self.port == 22 else f"[{self.host}]:{self.port}"
        if not host_keys.check(lookup, server_key):
            raise ConnectError(
                f"host key for {lookup} ({server_key.get_name()}) is not in {self.known_hosts_path}"
            )

    def auth_password(self, password: str) -> None:
        self._require_transport().auth_password(self.username, password)

    def allowed_auth_types(self) -> List[str]:
        """Ask the server which methods it accepts.

        Returns an empty list when the server let us in without any
        credentials.
        """
        try:
            self._require_transport().auth_none(self.username)
        except paramiko.BadAuthenticationType as exc:
            return list(exc.allowed_types)
        return []

    def auth_publickey(self, key: paramiko.PKey) -> None:
        self._require_transport().auth_publickey(self.username, key)

    def open_session(self, timeout: Optional[float] = None) -> paramiko.Channel:
        return self._require_transport().open_session(timeout=timeout)

    def is_active(self) -> bool:
        return bool(self.transport and self.transport.is_active())

    def is_authenticated(self) -> bool:
        return bool(self.transport and self.transport.is_authenticated())

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()
        self.transport = None

    def _require_transport(self) -> paramiko.Transport:
        if self.transport is None:
            raise paramiko.SSHException("transport is not connected")
        return self.transport
