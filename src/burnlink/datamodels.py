from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, computed_field


class RecordState(StrEnum):
    AVAILABLE = "available"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class FileView(BaseModel):
    """What a successful take hands back to the caller."""

    payload: bytes = Field(repr=False)

    file_name: str

    mime_type: str

    size: int


class FileRecord(BaseModel):
    """
    One uploaded file and its one-time-download state.

    Records are frozen, state transitions produce a new copy so a table copy can be
    mutated and thrown away if persisting it fails. Field aliases are the persisted
    JSON layout, bytes go to disk as base64.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    token: str = Field(alias="fileId")

    file_name: str = Field(alias="fileName")

    # emptied once consumed, metadata is kept so the next access can report it
    payload: bytes = Field(default=b"", alias="fileData", repr=False)

    size: int = Field(alias="fileSize", ge=0)

    mime_type: str = Field(alias="mimeType")

    created_at: AwareDatetime = Field(alias="uploadTime")

    state: RecordState = RecordState.AVAILABLE

    consumed_at: Optional[AwareDatetime] = Field(default=None, alias="downloadedAt")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def downloaded(self) -> bool:
        return self.state is RecordState.CONSUMED

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return self.state is RecordState.EXPIRED or now - self.created_at > ttl

    def consume(self, now: datetime) -> "FileRecord":
        return self.model_copy(
            update={"state": RecordState.CONSUMED, "consumed_at": now, "payload": b""}
        )

    def view(self) -> FileView:
        return FileView(
            payload=self.payload,
            file_name=self.file_name,
            mime_type=self.mime_type,
            size=self.size,
        )


class StoreStatus(BaseModel):
    count: int

    tokens: list[str]


# --- HTTP API bodies, camelCase on the wire


class APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # always dump with the wire names
    def model_dump(self, **kwargs) -> dict:
        kwargs.setdefault("by_alias", True)
        return super().model_dump(**kwargs)

    def model_dump_json(self, **kwargs) -> str:
        kwargs.setdefault("by_alias", True)
        return super().model_dump_json(**kwargs)


class UploadResponse(APIModel):
    success: bool = True

    file_id: str = Field(alias="fileId")

    message: str = "File uploaded successfully"

    download_url: str = Field(alias="downloadUrl")


class StatusResponse(APIModel):
    success: bool = True

    file_count: int = Field(alias="fileCount")

    files: list[str]


class ErrorResponse(APIModel):
    success: bool = False

    message: str


class DownloadedFile(BaseModel):
    content: bytes = Field(repr=False)

    filename: Optional[str] = None

    mime_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)
