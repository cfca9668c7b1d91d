"""Shared fakes standing in for paramiko transports and channels."""

from __future__ import annotations

import time
from typing import Callable, List, Optional

import paramiko
import pytest

from ubntssh.errors import ConnectError
from ubntssh.session import DeviceSession

HOST = "10.0.0.1"
USER = "ubnt"
PASSWORD = "secret"


class FakeChannel:
    """Exec channel that hands out scripted chunks."""

    def __init__(
        self,
        chunks: tuple = (),
        eof: bool = False,
        exit_status: Optional[int] = None,
        exec_error: Optional[Exception] = None,
        recv_error: Optional[Exception] = None,
        on_recv: Optional[Callable[["FakeChannel"], None]] = None,
        endless: bytes = b"",
    ) -> None:
        self.pending: List[bytes] = list(chunks)
        self.eof_when_drained = eof
        self.eof_received = eof and not self.pending
        self.closed = False
        self.exit_status = exit_status
        self.exec_error = exec_error
        self.recv_error = recv_error
        self.on_recv = on_recv
        self.endless = endless
        self.command: Optional[str] = None
        self.timeout: Optional[float] = None
        self.shutdown_called = False
        self.recv_sizes: List[int] = []

    def exec_command(self, command: str) -> None:
        if self.exec_error:
            raise self.exec_error
        self.command = command

    def settimeout(self, timeout: float) -> None:
        self.timeout = timeout

    def recv_ready(self) -> bool:
        return bool(self.pending) or bool(self.endless)

    def recv(self, size: int) -> bytes:
        self.recv_sizes.append(size)
        if self.recv_error:
            raise self.recv_error
        if self.on_recv:
            self.on_recv(self)
        if self.endless:
            time.sleep(0.01)
            return self.endless
        if not self.pending:
            return b""
        chunk = self.pending.pop(0)
        if len(chunk) > size:
            self.pending.insert(0, chunk[size:])
            chunk = chunk[:size]
        if not self.pending and self.eof_when_drained:
            self.eof_received = True
        return chunk

    def exit_status_ready(self) -> bool:
        return self.exit_status is not None

    def recv_exit_status(self) -> int:
        return self.exit_status

    def shutdown_write(self) -> None:
        self.shutdown_called = True

    def close(self) -> None:
        self.closed = True


class FakeScpChannel:
    """Plays the remote side of ``scp -f``."""

    def __init__(
        self,
        content: bytes = b"",
        filename: str = "system.cfg",
        header: Optional[bytes] = None,
        trailer: bytes = b"\x00",
        max_recv: Optional[int] = None,
        exec_error: Optional[Exception] = None,
        preamble: bytes = b"",
        recv_error: Optional[Exception] = None,
    ) -> None:
        self.content = content
        self.recv_error = recv_error
        self.header = header if header is not None else f"C0644 {len(content)} {filename}\n".encode()
        self.trailer = trailer
        self.max_recv = max_recv
        self.exec_error = exec_error
        self.responses = ([preamble] if preamble else []) + [self.header, content + trailer]
        self.outbox = bytearray()
        self.acks = 0
        self.command: Optional[str] = None
        self.closed = False
        self.shutdown_called = False

    def settimeout(self, timeout: float) -> None:
        self.timeout = timeout

    def exec_command(self, command: str) -> None:
        if self.exec_error:
            raise self.exec_error
        self.command = command

    def sendall(self, data: bytes) -> None:
        for _ in data:
            self.acks += 1
            if self.responses:
                self.outbox += self.responses.pop(0)

    def recv(self, size: int) -> bytes:
        if self.recv_error:
            raise self.recv_error
        if self.max_recv:
            size = min(size, self.max_recv)
        chunk = bytes(self.outbox[:size])
        del self.outbox[:size]
        return chunk

    def shutdown_write(self) -> None:
        self.shutdown_called = True

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Drop-in for :class:`ubntssh.transport.TransportHandle`."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        connect_timeout: float = 10,
        verify_host_key: bool = True,
        known_hosts_path: Optional[str] = None,
        channels: Optional[list] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.connect_timeout = connect_timeout
        self.verify_host_key = verify_host_key
        self.password = PASSWORD
        self.allowed = ["publickey", "password"]
        self.connect_error: Optional[Exception] = None
        self.open_error: Optional[Exception] = None
        self.reject_key = False
        self.allowed_error: Optional[Exception] = None
        self.channels = channels if channels is not None else []
        self.calls: List[str] = []
        self.active = False
        self.authenticated = False
        self.closed = False

    def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_error:
            raise self.connect_error
        self.active = True

    def auth_password(self, password: str) -> None:
        self.calls.append("auth_password")
        if password != self.password:
            raise paramiko.AuthenticationException("Authentication failed.")
        self.authenticated = True

    def allowed_auth_types(self) -> List[str]:
        self.calls.append("allowed_auth_types")
        if self.allowed_error:
            raise self.allowed_error
        return list(self.allowed)

    def auth_publickey(self, key) -> None:
        self.calls.append("auth_publickey")
        if self.reject_key:
            raise paramiko.AuthenticationException("Authentication failed.")
        self.authenticated = True

    def open_session(self, timeout: Optional[float] = None):
        self.calls.append("open_session")
        if self.open_error:
            raise self.open_error
        return self.channels.pop(0)

    def is_active(self) -> bool:
        return self.active and not self.closed

    def is_authenticated(self) -> bool:
        return self.authenticated

    def close(self) -> None:
        self.closed = True
        self.active = False


@pytest.fixture()
def channel_queue() -> list:
    """Channels handed out, in order, by every fake transport."""
    return []


@pytest.fixture()
def transports() -> List[FakeTransport]:
    return []


@pytest.fixture()
def transport_factory(transports: List[FakeTransport], channel_queue: list):
    def factory(*args, **kwargs) -> FakeTransport:
        transport = FakeTransport(*args, channels=channel_queue, **kwargs)
        transports.append(transport)
        return transport

    return factory


@pytest.fixture()
def session(transport_factory) -> DeviceSession:
    return DeviceSession(HOST, 22, USER, transport_factory=transport_factory)


@pytest.fixture()
def authed_session(session: DeviceSession) -> DeviceSession:
    session.authenticate_with_password(PASSWORD)
    return session


@pytest.fixture()
def unreachable() -> ConnectError:
    return ConnectError(f"connect to {HOST}:22 failed: [Errno 113] No route to host")
