import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional

import paramiko

from ubntssh.config import CONNECT_TIMEOUT, DEFAULT_POLL_TIMEOUT
from ubntssh.errors import (
    AllocationError, AuthError, ConnectError, DeviceError, KeyLoadError,
    KeyOfferRejectedError, NotAuthenticatedError, PasswordAuthError, SessionBusyError,
)
from ubntssh.transport import TransportHandle
from ubntssh.utils import iso_now, json_line, log_error


class SessionState(Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"
    RECREATING = "recreating"
    # authentication failed; disconnect() or reconnect_transport() next
    FAILED = "failed"


TransportFactory = Callable[..., TransportHandle]


class DeviceSession:
    """SSH session to a single device.

    A session is owned by one caller at a time. ``execute`` and
    ``fetch_config`` raise :class:`SessionBusyError` instead of sharing the
    transport with a second caller.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        connect_timeout: float = CONNECT_TIMEOUT,
        verify_host_key: bool = True,
        known_hosts_path: Optional[str] = None,
        event_log_path: Optional[str] = None,
        transport_factory: TransportFactory = TransportHandle,
        session_id: int = 0,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    ):
        if not host:
            raise ValueError("host is required")
        if not 1 <= int(port) <= 65535:
            raise ValueError(f"port must be in 1..65535, got {port}")

        self.id = session_id
        self.host = host
        self.port = int(port)
        self.username = username
        self.connect_timeout = connect_timeout
        self.verify_host_key = verify_host_key
        self.known_hosts_path = known_hosts_path
        self.event_log_path = event_log_path
        self.transport_factory = transport_factory
        self.poll_timeout = poll_timeout

        self.created_at = datetime.now()
        self.state = SessionState.CREATED
        self.is_dead = False
        self.death_reason = ""
        self.last_command = ""
        self.last_command_time: Optional[datetime] = None

        self.lock = threading.Lock()
        self.transport = self._new_transport()
        self._log_session("SYS", {"event": "session_created", "host": host, "port": self.port})

    def _new_transport(self) -> TransportHandle:
        try:
            return self.transport_factory(
                self.host,
                self.port,
                self.username,
                connect_timeout=self.connect_timeout,
                verify_host_key=self.verify_host_key,
                known_hosts_path=self.known_hosts_path,
            )
        except Exception as exc:
            raise AllocationError(f"could not create transport for {self.host}:{self.port}: {exc}") from exc

    def _log_session(self, direction: str, payload: Dict[str, Any]) -> None:
        if not self.event_log_path:
            return
        data = {"ts": iso_now(), "dir": direction, "session_id": self.id}
        data.update(payload)
        json_line(self.event_log_path, data)

    # ========= Lifecycle =========

    def reconnect_transport(self) -> None:
        """Replace the transport handle with a fresh, unconnected one."""
        self.state = SessionState.RECREATING
        self._close_transport()
        self.transport = self._new_transport()
        self.is_dead = False
        self.death_reason = ""
        self.state = SessionState.CREATED
        self._log_session("SYS", {"event": "transport_recreated"})

    def authenticate_with_password(self, password: str) -> None:
        self._begin_connect()
        self._connect()
        try:
            self.transport.auth_password(password)
        except paramiko.AuthenticationException as exc:
            self._fail("password rejected")
            raise PasswordAuthError(f"password rejected for {self.username}@{self.host}") from exc
        except (paramiko.SSHException, OSError, EOFError) as exc:
            self._fail(f"password auth failed: {exc}")
            raise AuthError(f"password auth failed for {self.username}@{self.host}: {exc}") from exc
        self._authenticated("password")

    def authenticate_with_keypair(
        self,
        public_key_path: str,
        private_key_path: str,
        passphrase: Optional[str] = None,
    ) -> None:
        public_key = None
        private_key = None
        try:
            public_key = _load_public_key(public_key_path)
            self._begin_connect()
            self._connect()

            # paramiko cannot ask about one key without signing, so this only
            # checks that the server takes public keys at all
            try:
                allowed = self.transport.allowed_auth_types()
            except (paramiko.SSHException, OSError, EOFError) as exc:
                self._fail(f"auth method query failed: {exc}")
                raise AuthError(f"could not query auth methods on {self.host}: {exc}") from exc
            if not allowed and self.transport.is_authenticated():
                self._authenticated("none")
                return
            if "publickey" not in allowed:
                self._fail("public key offer rejected")
                raise KeyOfferRejectedError(
                    f"{self.host} does not accept public keys (allowed: {', '.join(allowed) or 'none'})"
                )

            try:
                private_key = _load_private_key(private_key_path, passphrase, public_key)
            except KeyLoadError:
                self._fail("private key load failed")
                raise

            try:
                self.transport.auth_publickey(private_key)
            except paramiko.AuthenticationException as exc:
                self._fail("public key rejected")
                raise AuthError(f"public key rejected for {self.username}@{self.host}") from exc
            except (paramiko.SSHException, OSError, EOFError) as exc:
                self._fail(f"public key auth failed: {exc}")
                raise AuthError(f"public key auth failed for {self.username}@{self.host}: {exc}") from exc
            self._authenticated("publickey")
        finally:
            del public_key, private_key

    def disconnect(self) -> None:
        self._close_transport()
        self.state = SessionState.DISCONNECTED
        self._log_session("SYS", {"event": "disconnected"})

    def is_connected(self) -> bool:
        if self.transport is None:
            return False
        return self.transport.is_active()

    def check_health(self) -> bool:
        if self.is_dead:
            return False
        if self.state is SessionState.AUTHENTICATED and not self.is_connected():
            self._mark_dead("transport disconnected")
            return False
        return True

    def _begin_connect(self) -> None:
        if self.state is not SessionState.CREATED:
            raise DeviceError(
                f"session is {self.state.value}; call reconnect_transport() before authenticating again"
            )
        self.state = SessionState.CONNECTING

    def _connect(self) -> None:
        try:
            self.transport.connect()
        except ConnectError as exc:
            self._fail(str(exc))
            raise

    def _authenticated(self, method: str) -> None:
        self.state = SessionState.AUTHENTICATED
        self._log_session("SYS", {"event": "authenticated", "method": method})

    def _fail(self, reason: str) -> None:
        self.state = SessionState.FAILED
        self._log_session("SYS", {"event": "auth_failed", "reason": reason})

    def _mark_dead(self, reason: str) -> None:
        if self.is_dead:
            return
        self.is_dead = True
        self.death_reason = reason
        self._log_session("SYS", {"event": "session_dead", "reason": reason})

    def _close_transport(self) -> None:
        if self.transport is None:
            return
        try:
            self.transport.close()
        except (paramiko.SSHException, OSError) as exc:
            log_error(f"closing transport to {self.host}:{self.port} failed: {exc}")
        self.transport = None

    # ========= Ownership =========

    def require_authenticated(self) -> None:
        if self.state is not SessionState.AUTHENTICATED:
            raise NotAuthenticatedError(
                f"session to {self.host}:{self.port} is {self.state.value}, not authenticated"
            )

    @contextmanager
    def claim(self, purpose: str) -> Iterator[None]:
        if not self.lock.acquire(blocking=False):
            raise SessionBusyError(f"session to {self.host}:{self.port} is busy ({purpose})")
        try:
            yield
        finally:
            self.lock.release()

    def is_busy(self) -> bool:
        return self.lock.locked()

    # ========= Operations =========

    def execute(self, command: str, **kwargs: Any):
        from ubntssh.channel import execute_command
        return execute_command(self, command, **kwargs)

    def fetch_config(self, **kwargs: Any) -> bytes:
        from ubntssh.scp import fetch_config
        return fetch_config(self, **kwargs)

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "state": self.state.value,
            "alive": not self.is_dead and self.is_connected(),
            "dead": self.is_dead,
            "death_reason": self.death_reason if self.is_dead else "",
            "busy": self.is_busy(),
            "last_command": self.last_command,
            "last_command_time": self.last_command_time.isoformat() if self.last_command_time else None,
            "created_at": self.created_at.isoformat(),
        }


def _load_public_key(path: str) -> paramiko.PublicBlob:
    try:
        return paramiko.PublicBlob.from_file(path)
    except (OSError, ValueError) as exc:
        raise KeyLoadError(f"could not load public key {path}: {exc}") from exc


def _load_private_key(
    path: str,
    passphrase: Optional[str],
    public_key: paramiko.PublicBlob,
) -> paramiko.PKey:
    try:
        key = paramiko.PKey.from_path(path, passphrase=passphrase)
    except (OSError, ValueError, paramiko.SSHException, paramiko.UnknownKeyType) as exc:
        raise KeyLoadError(f"could not load private key {path}: {exc}") from exc

    if key.asbytes() != public_key.key_blob:
        raise KeyLoadError(f"private key {path} does not match the offered public key")
    return key
