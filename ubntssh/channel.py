"""Run one command over an exec channel and collect its output.

Completion is detected two ways. The channel reports end-of-stream (remote
EOF with nothing left buffered, or the channel closed), or a whole poll
window passes with no data pending. Many busybox commands on the devices
never close their channel, so the second rule is what usually ends a
command. Output that arrives slower than one poll window is truncated;
raise ``poll_timeout`` for such commands.
"""

import socket
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import paramiko

from ubntssh.config import (
    BUFFER_SIZE, DEFAULT_HARD_TIMEOUT, DEFAULT_POLL_TIMEOUT, MAX_HARD_TIMEOUT,
    MAX_POLL_TIMEOUT, POLL_INTERVAL,
)
from ubntssh.errors import (
    ChannelAllocationError, CommandCancelledError, ExecReadError, ExecRequestError,
    SessionOpenError,
)
from ubntssh.utils import clamp_float, log_error, rstrip_output

if TYPE_CHECKING:
    from ubntssh.session import DeviceSession

POLL_DATA = "data"
POLL_IDLE = "idle"
POLL_CANCELLED = "cancelled"
POLL_DEADLINE = "deadline"


@dataclass
class CommandResult:
    command: str
    output: str
    raw: bytes
    exit_status: Optional[int]
    completion_method: str

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0


def execute_command(
    session: "DeviceSession",
    command: str,
    poll_timeout: Optional[float] = None,
    read_timeout: Optional[float] = None,
    hard_timeout: float = DEFAULT_HARD_TIMEOUT,
    cancel: Optional[threading.Event] = None,
    exit_status_wait: float = 0.0,
) -> CommandResult:
    """Execute ``command`` on an authenticated session.

    ``poll_timeout`` is the silence window that ends the command; it
    defaults to the session's ``poll_timeout``.
    ``hard_timeout`` (0 disables) bounds the whole command, and setting
    ``cancel`` abandons it; both close the channel and raise
    :class:`CommandCancelledError` carrying the partial output.
    ``exit_status_wait`` is how long to wait for the exit status once
    output has stopped.
    """
    if poll_timeout is None:
        poll_timeout = session.poll_timeout
    poll_timeout = clamp_float(poll_timeout, DEFAULT_POLL_TIMEOUT, 0.01, MAX_POLL_TIMEOUT)
    if read_timeout is None:
        read_timeout = poll_timeout
    read_timeout = clamp_float(read_timeout, poll_timeout, 0.01, MAX_POLL_TIMEOUT)
    hard_timeout = clamp_float(hard_timeout, DEFAULT_HARD_TIMEOUT, 0.0, MAX_HARD_TIMEOUT)
    exit_status_wait = clamp_float(exit_status_wait, 0.0, 0.0, MAX_POLL_TIMEOUT)

    session.require_authenticated()
    with session.claim(command):
        session.last_command = command
        session.last_command_time = datetime.now()
        session._log_session(
            "IN",
            {
                "event": "exec_start",
                "command": command,
                "poll_timeout": poll_timeout,
                "hard_timeout": hard_timeout,
            },
        )

        channel = _open_channel(session, command)
        try:
            result = _run(channel, command, poll_timeout, read_timeout, hard_timeout, cancel, exit_status_wait)
        except CommandCancelledError as exc:
            session._log_session("SYS", {"event": "exec_cancelled", "command": command, "reason": str(exc)})
            raise
        finally:
            _release(channel)

        session._log_session(
            "OUT",
            {
                "event": "exec_done",
                "command": command,
                "bytes": len(result.raw),
                "exit_status": result.exit_status,
                "completion_method": result.completion_method,
            },
        )
        return result


def _open_channel(session: "DeviceSession", command: str) -> paramiko.Channel:
    if session.transport is None or not session.transport.is_active():
        raise ChannelAllocationError(f"no active transport to {session.host}", command)
    try:
        return session.transport.open_session(timeout=session.connect_timeout)
    except paramiko.ChannelException as exc:
        raise SessionOpenError(f"{session.host} refused session channel: {exc}", command) from exc
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise ChannelAllocationError(f"could not allocate channel on {session.host}: {exc}", command) from exc


def _run(
    channel: paramiko.Channel,
    command: str,
    poll_timeout: float,
    read_timeout: float,
    hard_timeout: float,
    cancel: Optional[threading.Event],
    exit_status_wait: float,
) -> CommandResult:
    try:
        channel.exec_command(command)
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise ExecRequestError(f"exec request rejected: {exc}", command) from exc

    started_at = time.time()
    hard_deadline = (started_at + hard_timeout) if hard_timeout > 0 else None
    channel.settimeout(read_timeout)

    received = bytearray()
    completion_method = "eof"
    while not channel.closed and not _at_eof(channel):
        state = _poll(channel, poll_timeout, hard_deadline, cancel)
        if state == POLL_CANCELLED:
            raise CommandCancelledError("command cancelled", command, partial_output=_decode(received))
        if state == POLL_DEADLINE:
            raise CommandCancelledError(
                f"hard timeout of {hard_timeout}s reached", command, partial_output=_decode(received)
            )
        if state == POLL_IDLE:
            if not channel.closed and not _at_eof(channel):
                completion_method = "quiet"
            break

        try:
            chunk = channel.recv(BUFFER_SIZE)
        except socket.timeout as exc:
            raise ExecReadError(f"read timed out after {read_timeout}s", command) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise ExecReadError(f"read failed: {exc}", command) from exc
        if not chunk:
            break
        received += chunk

    return CommandResult(
        command=command,
        output=rstrip_output(_decode(received)),
        raw=bytes(received),
        exit_status=_exit_status(channel, exit_status_wait),
        completion_method=completion_method,
    )


def _poll(
    channel: paramiko.Channel,
    timeout: float,
    hard_deadline: Optional[float],
    cancel: Optional[threading.Event],
) -> str:
    window_end = time.time() + timeout
    while True:
        if cancel is not None and cancel.is_set():
            return POLL_CANCELLED
        now = time.time()
        if hard_deadline is not None and now >= hard_deadline:
            return POLL_DEADLINE
        if channel.recv_ready():
            return POLL_DATA
        if channel.closed or channel.eof_received:
            return POLL_IDLE
        if now >= window_end:
            return POLL_IDLE
        if cancel is not None:
            cancel.wait(POLL_INTERVAL)
        else:
            time.sleep(POLL_INTERVAL)


def _at_eof(channel: paramiko.Channel) -> bool:
    return channel.eof_received and not channel.recv_ready()


def _exit_status(channel: paramiko.Channel, wait: float) -> Optional[int]:
    deadline = time.time() + wait
    while not channel.exit_status_ready():
        if time.time() >= deadline:
            return None
        time.sleep(POLL_INTERVAL)
    return channel.recv_exit_status()


def _decode(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def _release(channel: paramiko.Channel) -> None:
    try:
        channel.shutdown_write()
    except (paramiko.SSHException, OSError, EOFError) as exc:
        log_error(f"sending eof on channel failed: {exc}")
    try:
        channel.close()
    except (paramiko.SSHException, OSError, EOFError) as exc:
        log_error(f"closing channel failed: {exc}")
