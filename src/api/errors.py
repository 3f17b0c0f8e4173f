"""Error taxonomy for the storage and merge pipeline."""

from __future__ import annotations


class VoiceNotesError(Exception):
    """Base exception carrying a machine readable code and an HTTP status."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


class MissingUpload(VoiceNotesError):
    status_code = 400
    error_code = "missing_file"


class InvalidRequest(VoiceNotesError):
    status_code = 400
    error_code = "invalid_request"


class UnsupportedMediaType(VoiceNotesError):
    status_code = 415
    error_code = "unsupported_media_type"


class PayloadTooLarge(VoiceNotesError):
    status_code = 413
    error_code = "payload_too_large"


class StorageError(VoiceNotesError):
    """Failure raised by the blob store."""

    error_code = "storage_error"


class WriteFailed(StorageError):
    error_code = "write_failed"


class DeleteFailed(StorageError):
    error_code = "delete_failed"


class ObjectNotFound(StorageError):
    status_code = 404
    error_code = "not_found"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No stored object for key '{key}'")


class InvalidObjectKey(StorageError):
    status_code = 400
    error_code = "invalid_key"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Invalid object key '{key}'")


class MergeError(VoiceNotesError):
    """Failure raised while concatenating stored chunks."""

    error_code = "merge_failed"


class NoChunksToMerge(MergeError):
    status_code = 400
    error_code = "no_chunks"

    def __init__(self, message: str = "No chunks provided for merge") -> None:
        super().__init__(message)


class MergeProcessFailed(MergeError):
    error_code = "merge_process_failed"

    def __init__(self, exit_code: int | None, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f"Concat process exited with code {exit_code}"
        if stderr:
            detail = f"{detail}: {stderr}"
        super().__init__(detail)


class MergeProcessUnavailable(MergeError):
    status_code = 503
    error_code = "merge_process_unavailable"


__all__ = [
    "DeleteFailed",
    "InvalidObjectKey",
    "InvalidRequest",
    "MergeError",
    "MergeProcessFailed",
    "MergeProcessUnavailable",
    "MissingUpload",
    "NoChunksToMerge",
    "ObjectNotFound",
    "PayloadTooLarge",
    "StorageError",
    "UnsupportedMediaType",
    "VoiceNotesError",
    "WriteFailed",
]
