from asset_gateway.schemas.upload import (
    ErrorResponse,
    HealthResponse,
    JsonUploadBody,
    UploadData,
    UploadResponse,
)

__all__ = [
    "JsonUploadBody",
    "UploadData",
    "UploadResponse",
    "ErrorResponse",
    "HealthResponse",
]
