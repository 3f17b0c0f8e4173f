"""Client-side error taxonomy."""

from __future__ import annotations


class CaptureError(Exception):
    """Terminal failure of the current capture session."""


class PermissionDenied(CaptureError):
    pass


class DeviceUnavailable(CaptureError):
    pass


class DeviceInactive(CaptureError):
    pass


class CaptureStateError(Exception):
    """Raised when a capture operation is invoked from the wrong state."""


class ApiError(Exception):
    pass


class TransportFailure(ApiError):
    """The request never produced an HTTP response."""


class ServerRejected(ApiError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"Server rejected request ({status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UploadNotAllowed(Exception):
    pass


class MergeNotAllowed(Exception):
    pass


class SaveFailed(Exception):
    pass
