"""Canned airOS queries built on :func:`ubntssh.channel.execute_command`."""

import warnings
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from ubntssh.channel import execute_command
from ubntssh.config import (
    DEFAULT_POLL_TIMEOUT, SAVE_COMMAND, SCAN_COMMAND, STATION_LIST_COMMAND, STATUS_COMMAND,
)
from ubntssh.transcoder import StatusRecord, parse_status, status_to_json
from ubntssh.utils import log_error, strip_line_breaks

if TYPE_CHECKING:
    from ubntssh.session import DeviceSession


class Status(Enum):
    ERROR = 0
    SUCCESS = 1


def station_list(session: "DeviceSession", **kwargs: Any) -> str:
    """Stations associated with the device, as returned by ``wstalist``."""
    return strip_line_breaks(execute_command(session, STATION_LIST_COMMAND, **kwargs).output)


def scan(session: "DeviceSession", **kwargs: Any) -> str:
    """Access points the device radio can see."""
    return strip_line_breaks(execute_command(session, SCAN_COMMAND, **kwargs).output)


def status(session: "DeviceSession", max_chars: Optional[int] = None, **kwargs: Any) -> str:
    return status_to_json(execute_command(session, STATUS_COMMAND, **kwargs).output, max_chars=max_chars)


def status_record(session: "DeviceSession", **kwargs: Any) -> StatusRecord:
    return parse_status(execute_command(session, STATUS_COMMAND, **kwargs).output)


def save_config(
    session: "DeviceSession",
    legacy_output_check: bool = False,
    exit_status_wait: float = DEFAULT_POLL_TIMEOUT,
    **kwargs: Any,
) -> Status:
    """Persist the running configuration to flash.

    Success is judged by the exit status of ``cfgmtd``. With
    ``legacy_output_check`` any output at all counts as success, which is
    how older callers behaved; that mode is deprecated.
    """
    if legacy_output_check:
        warnings.warn(
            "legacy_output_check treats any output as success; rely on the exit status instead",
            DeprecationWarning,
            stacklevel=2,
        )
        result = execute_command(session, SAVE_COMMAND, **kwargs)
        return Status.SUCCESS if result.output else Status.ERROR

    result = execute_command(session, SAVE_COMMAND, exit_status_wait=exit_status_wait, **kwargs)
    if result.exit_status is None:
        log_error(f"{session.host}: no exit status from '{SAVE_COMMAND}', treating as failure")
        return Status.ERROR
    return Status.SUCCESS if result.exit_status == 0 else Status.ERROR
