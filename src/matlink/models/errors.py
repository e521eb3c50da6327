"""Typed failures raised by matlink services.

Every error carries an upper-case ``code`` and a human-readable ``reason``;
``str(error)`` renders as ``"CODE: reason"``, matching the error strings
published in status snapshots.
"""

from typing import Optional


class MatLinkError(Exception):
    """Base class for all recoverable matlink failures."""

    code = "MATLINK_ERROR"

    def __init__(self, reason: str, *, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{self.code}: {reason}")


class PermissionDenied(MatLinkError):
    code = "PERMISSION_DENIED"


class RadioUnavailable(MatLinkError):
    code = "RADIO_UNAVAILABLE"


class ScanFailed(MatLinkError):
    code = "SCAN_FAILED"


class ConnectionTimeout(MatLinkError):
    code = "CONNECTION_TIMEOUT"


class ConnectionFailed(MatLinkError):
    code = "CONNECTION_FAILED"


class LinkLost(MatLinkError):
    """Delivered as an event on the radio event stream, never raised by a call."""

    code = "LINK_LOST"


class NetworkScanFailed(MatLinkError):
    code = "NETWORK_SCAN_FAILED"


class NetworkAuthFailed(MatLinkError):
    code = "NETWORK_AUTH_FAILED"


class UpdateCheckFailed(MatLinkError):
    code = "UPDATE_CHECK_FAILED"


class DownloadFailed(MatLinkError):
    code = "DOWNLOAD_FAILED"


class InstallFailed(MatLinkError):
    code = "INSTALL_FAILED"


class OperationRejected(MatLinkError):
    """A second radio link, network session or update session was requested."""

    code = "OPERATION_REJECTED"


class ConnectionRejected(OperationRejected):
    code = "CONNECTION_REJECTED"


class NetworkSessionRejected(OperationRejected):
    code = "NETWORK_SESSION_REJECTED"


class UpdateRejected(OperationRejected):
    code = "UPDATE_REJECTED"
