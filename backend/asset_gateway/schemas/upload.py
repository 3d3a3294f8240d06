from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JsonUploadBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: Any
    file_data: str = Field(..., validation_alias=AliasChoices("fileData", "file"))
    mime_type: str | None = Field(default=None, validation_alias=AliasChoices("mimeType", "mime_type"))
    file_name: str | None = Field(default=None, validation_alias=AliasChoices("fileName", "file_name"))


class UploadData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    bucket: str
    file_path: str
    public_url: str
    size: int
    mime_type: str


class UploadResponse(BaseModel):
    success: bool = True
    message: str = "File uploaded successfully"
    data: UploadData


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    backend: str
    bucket: str
