from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ObjectRecord(ApiModel):
    key: str
    size: int
    last_modified: datetime
    download_url: str


class ObjectPage(ApiModel):
    objects: list[ObjectRecord]
    next_cursor: str | None = None


class UploadIntent(ApiModel):
    directory: str | None = None
    file_name: str | None = None
    content_type: str | None = None


class SignedCapability(ApiModel):
    url: str
    key: str
    method: Literal["PUT", "GET"]
    expires_at: int


class PresignRequest(ApiModel):
    file_name: str | None = None
    file_type: str | None = None
    directory: str | None = Field(
        default=None,
        validation_alias=AliasChoices("directory", "fileDirectory"),
    )

    def to_intent(self) -> UploadIntent:
        return UploadIntent(
            directory=self.directory,
            file_name=self.file_name,
            content_type=self.file_type,
        )


class PresignResponse(ApiModel):
    upload_url: str
    key: str
    expires_at: int


class DownloadUrlRequest(ApiModel):
    key: str | None = None


class DownloadUrlResponse(ApiModel):
    download_url: str
    key: str
    expires_at: int


class DeleteTarget(ApiModel):
    key: str | None = None


class DeleteRequest(ApiModel):
    file: DeleteTarget | None = None


class DeleteResult(ApiModel):
    success: bool
    key: str


class Identity(ApiModel):
    user_id: str
    role: str
