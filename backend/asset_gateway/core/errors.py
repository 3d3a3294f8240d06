from fastapi import status


class UploadError(Exception):
    """Base class for failures that end an upload request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Failed to upload file"

    def __init__(self, message: str | None = None, details: str | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class MethodNotAllowed(UploadError):
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    default_message = "Method not allowed. Use POST."


class UnsupportedMediaType(UploadError):
    # Reported as 400 to match existing clients.
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Content-Type must be multipart/form-data or application/json"


class InvalidPath(UploadError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "path must be a non-empty array"


class MalformedPayload(UploadError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "File upload error"


class PayloadTooLarge(UploadError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "File too large"


class StoreError(UploadError):
    """Raised by object store backends."""


class NotFound(StoreError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Object or bucket not found"


class PermissionDenied(StoreError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Permission denied. Check service account permissions."


class StoreUnavailable(StoreError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to upload file"


class ClientDisconnected(Exception):
    """Raised when the caller goes away before the upload is committed."""
