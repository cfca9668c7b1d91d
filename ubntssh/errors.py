"""Exception types raised by device sessions, channels and transfers."""

from typing import Optional


class DeviceError(Exception):
    """Base exception for all device errors."""


# ── Session ─────────────────────────────────────────────────────


class AllocationError(DeviceError):
    """Transport handle could not be created."""


class ConnectError(DeviceError):
    """TCP connect or SSH handshake failed."""


class AuthError(DeviceError):
    """Credentials rejected."""


class PasswordAuthError(AuthError):
    """Password authentication rejected."""


class KeyOfferRejectedError(AuthError):
    """Server is not willing to accept public-key authentication."""


class KeyLoadError(AuthError):
    """Public or private key could not be loaded."""


class NotAuthenticatedError(DeviceError):
    """Operation requires an authenticated session."""


class SessionBusyError(DeviceError):
    """Session is already in use by another caller."""


# ── Remote execution ────────────────────────────────────────────


class ExecError(DeviceError):
    """Command channel failed. ``stage`` names the step that failed."""

    stage = "exec"

    def __init__(self, message: str, command: str = ""):
        super().__init__(message)
        self.command = command


class ChannelAllocationError(ExecError):
    stage = "channel_alloc"


class SessionOpenError(ExecError):
    stage = "open_session"


class ExecRequestError(ExecError):
    stage = "exec_request"


class ExecReadError(ExecError):
    stage = "read"


class CommandCancelledError(ExecError):
    """Command abandoned by cancel token or hard timeout.

    ``partial_output`` holds whatever was received before the channel was
    closed.
    """

    stage = "cancelled"

    def __init__(self, message: str, command: str = "", partial_output: Optional[str] = None):
        super().__init__(message, command)
        self.partial_output = partial_output


# ── Config retrieval ────────────────────────────────────────────


class TransferError(DeviceError):
    """SCP pull failed. ``stage`` names the step that failed."""

    stage = "transfer"


class TransferAllocationError(TransferError):
    stage = "alloc"


class TransferInitError(TransferError):
    stage = "init"


class TransferRequestError(TransferError):
    stage = "pull_request"


class TransferReadError(TransferError):
    stage = "read"


class TransferSizeError(TransferError):
    stage = "size"


# ── Transcoding ─────────────────────────────────────────────────


class ParseOverflowError(DeviceError):
    """Transcoded status output exceeds its size bound."""
