"""Pull a remote file into memory with the SCP source protocol.

The devices run dropbear with busybox ``scp``; there is no SFTP server, so
the transfer is driven by hand over an exec channel running
``scp -f <path>``. Each side acknowledges a control line or a finished file
with a single NUL byte.
"""

import math
import shlex
import socket
from enum import Enum
from typing import TYPE_CHECKING, Optional

import paramiko

from ubntssh.config import CONFIG_PATH, DEFAULT_POLL_TIMEOUT, MAX_POLL_TIMEOUT, SCP_READ_SIZE
from ubntssh.errors import (
    TransferAllocationError, TransferInitError, TransferReadError, TransferRequestError,
    TransferSizeError,
)
from ubntssh.utils import clamp_float, log_error

if TYPE_CHECKING:
    from ubntssh.session import DeviceSession

ACK = b"\x00"
MAX_CONTROL_LINE = 4096


class ScpRequest(Enum):
    NEWFILE = "newfile"
    EOF = "eof"
    WARNING = "warning"
    ERROR = "error"


class ScpReader:
    def __init__(self, channel: paramiko.Channel, path: str, timeout: float = DEFAULT_POLL_TIMEOUT):
        self.channel = channel
        self.path = path
        self.timeout = timeout
        self.size = 0
        self.mode = ""
        self.filename = ""
        self.message = ""
        self.remaining = 0

    def init(self) -> None:
        self.channel.settimeout(self.timeout)
        self.channel.exec_command(f"scp -f {shlex.quote(self.path)}")
        self.channel.sendall(ACK)

    def pull_request(self) -> ScpRequest:
        while True:
            line = self._read_line()
            if line is None:
                return ScpRequest.EOF

            code, body = line[:1], line[1:].decode("utf-8", errors="replace")
            if code == b"C":
                parts = body.split(" ", 2)
                if len(parts) != 3 or not parts[1].isdigit():
                    self.message = f"malformed file header: {body!r}"
                    return ScpRequest.ERROR
                self.mode, self.size, self.filename = parts[0], int(parts[1]), parts[2]
                return ScpRequest.NEWFILE
            if code == b"T":
                # modification times, only sent with -p
                self.channel.sendall(ACK)
                continue
            if code == b"\x01":
                self.message = body
                return ScpRequest.WARNING
            if code == b"\x02":
                self.message = body
                return ScpRequest.ERROR
            self.message = f"unexpected control line: {line[:40]!r}"
            return ScpRequest.ERROR

    def accept_request(self) -> None:
        self.remaining = self.size
        self.channel.sendall(ACK)
        if self.remaining == 0:
            self._finish_file()

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes of the current file."""
        wanted = min(size, self.remaining)
        if wanted <= 0:
            return b""
        data = self._recv_exact(wanted)
        self.remaining -= len(data)
        if self.remaining == 0:
            self._finish_file()
        return data

    def at_eof(self) -> bool:
        return self.remaining == 0

    def close(self) -> None:
        try:
            self.channel.shutdown_write()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            log_error(f"sending eof on scp channel for {self.path} failed: {exc}")
        try:
            self.channel.close()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            log_error(f"closing scp channel for {self.path} failed: {exc}")

    def _finish_file(self) -> None:
        status = self._recv_exact(1)
        if status != ACK:
            raise TransferReadError(f"remote scp reported failure after {self.path}: {status!r}")
        self.channel.sendall(ACK)

    def _read_line(self) -> Optional[bytes]:
        line = bytearray()
        while len(line) < MAX_CONTROL_LINE:
            byte = self._recv(1)
            if not byte:
                if line:
                    raise TransferReadError(f"connection closed inside control line: {bytes(line)!r}")
                return None
            if byte == b"\n":
                return bytes(line)
            line += byte
        raise TransferReadError("scp control line too long")

    def _recv_exact(self, count: int) -> bytes:
        data = bytearray()
        while len(data) < count:
            chunk = self._recv(count - len(data))
            if not chunk:
                raise TransferReadError(f"connection closed after {len(data)} of {count} bytes")
            data += chunk
        return bytes(data)

    def _recv(self, count: int) -> bytes:
        try:
            return self.channel.recv(count)
        except socket.timeout as exc:
            raise TransferReadError(f"scp read timed out after {self.timeout}s") from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferReadError(f"scp read failed: {exc}") from exc


def fetch_config(
    session: "DeviceSession",
    remote_path: str = CONFIG_PATH,
    chunk_size: int = SCP_READ_SIZE,
    timeout: float = DEFAULT_POLL_TIMEOUT,
) -> bytes:
    """Copy ``remote_path`` from the device into memory.

    The file is read in ``chunk_size`` pieces, the most the remote scp
    serves per request. At most ``ceil(size / chunk_size)`` reads are made.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    timeout = clamp_float(timeout, DEFAULT_POLL_TIMEOUT, 0.01, MAX_POLL_TIMEOUT)

    session.require_authenticated()
    with session.claim(f"scp {remote_path}"):
        session._log_session("IN", {"event": "scp_start", "path": remote_path})
        reader = ScpReader(_open_channel(session), remote_path, timeout)
        try:
            data = _pull(reader, chunk_size)
        finally:
            reader.close()
        session._log_session("OUT", {"event": "scp_done", "path": remote_path, "bytes": len(data)})
        return data


def _open_channel(session: "DeviceSession") -> paramiko.Channel:
    if session.transport is None or not session.transport.is_active():
        raise TransferAllocationError(f"no active transport to {session.host}")
    try:
        return session.transport.open_session(timeout=session.connect_timeout)
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise TransferAllocationError(f"could not open scp channel on {session.host}: {exc}") from exc


def _pull(reader: ScpReader, chunk_size: int) -> bytes:
    try:
        reader.init()
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise TransferInitError(f"scp init for {reader.path} failed: {exc}") from exc

    try:
        request = reader.pull_request()
    except (TransferReadError, paramiko.SSHException, OSError, EOFError) as exc:
        raise TransferRequestError(f"scp request for {reader.path} failed: {exc}") from exc
    if request is not ScpRequest.NEWFILE:
        detail = f": {reader.message}" if reader.message else ""
        raise TransferRequestError(f"scp request for {reader.path} ended in {request.value}{detail}")

    file_size = reader.size
    num_reads = math.ceil(file_size / chunk_size)
    buffer = bytearray()
    try:
        reader.accept_request()
        reads = 0
        while not reader.at_eof() and reads < num_reads:
            buffer += reader.read(chunk_size)
            reads += 1
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise TransferReadError(f"scp read of {reader.path} failed: {exc}") from exc

    # read() raises on a short stream; this only catches a reader that stops early
    if len(buffer) < file_size:
        raise TransferSizeError(f"received {len(buffer)} of {file_size} bytes of {reader.path}")
    return bytes(buffer[:file_size])
