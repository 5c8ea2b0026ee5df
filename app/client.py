"""
Client side of the presigned-URL exchange.

``FileManagerClient`` talks to the API and to storage. ``UploadTask`` drives
one two-phase upload (mint a PUT URL, then send the bytes straight to
storage). ``FileBrowser`` owns the displayed record set and reports every
outcome through a ``notify`` callback instead of raising.
"""
import logging
import mimetypes
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypeVar

import httpx

from app.errors import (
    ERRORS_BY_CODE,
    FileManagerError,
    Forbidden,
    InvalidRequest,
    StorageUnavailable,
    TransferFailed,
    Unauthenticated,
)
from app.models import DeleteResult, ObjectPage, ObjectRecord, SignedCapability
from app.tree import Node, build_tree, filter_records

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_ERRORS_BY_STATUS = {400: InvalidRequest, 401: Unauthenticated, 403: Forbidden}


@dataclass(frozen=True)
class Notification:
    level: str  # info | success | error
    message: str


def log_notification(notification: Notification) -> None:
    level = logging.ERROR if notification.level == "error" else logging.INFO
    logger.log(level, notification.message)


@dataclass
class LocalFile:
    name: str
    content_type: str
    body: bytes

    @classmethod
    def from_path(cls, path: str | Path) -> "LocalFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, content_type=content_type or DEFAULT_CONTENT_TYPE, body=path.read_bytes())


def remove_by_key(records: Iterable[ObjectRecord], key: str) -> list[ObjectRecord]:
    return [record for record in records if record.key != key]


def error_from_response(response: httpx.Response) -> FileManagerError:
    message = f"Request failed (Status: {response.status_code})"
    code = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message") or message
        code = payload["error"].get("code")
    error_cls = ERRORS_BY_CODE.get(code) or _ERRORS_BY_STATUS.get(response.status_code, StorageUnavailable)
    return error_cls(message)


def _parse_records(payload) -> list[ObjectRecord]:
    return [ObjectRecord.model_validate(item) for item in payload]


def _parse_capability(payload, method: str, url_field: str) -> SignedCapability:
    return SignedCapability(
        url=payload[url_field],
        key=payload["key"],
        method=method,
        expires_at=payload.get("expiresAt", 0),
    )


class FileManagerClient:
    def __init__(
        self,
        base_url: str,
        *,
        session_token: str | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.http = http or httpx.AsyncClient()

    async def __aenter__(self) -> "FileManagerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.session_token:
            return {}
        return {"Authorization": f"Bearer {self.session_token}"}

    async def _api(self, method: str, path: str, parse: Callable[[object], T], **kwargs) -> T:
        try:
            response = await self.http.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise StorageUnavailable(f"File service unreachable: {exc}") from exc
        if response.is_error:
            raise error_from_response(response)
        # pydantic's ValidationError and JSONDecodeError are both ValueErrors
        try:
            return parse(response.json())
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Unexpected %s response from %s %s", response.status_code, method, path)
            raise StorageUnavailable(f"Unexpected response from file service (Status: {response.status_code})") from exc

    async def list_objects(self) -> list[ObjectRecord]:
        return await self._api("GET", "/objects", _parse_records)

    async def iter_pages(self, limit: int | None = None) -> AsyncIterator[ObjectPage]:
        cursor = None
        while True:
            params = {}
            if cursor:
                params["cursor"] = cursor
            if limit:
                params["limit"] = limit
            page = await self._api("GET", "/objects/page", ObjectPage.model_validate, params=params)
            yield page
            cursor = page.next_cursor
            if not cursor:
                return

    async def request_upload(self, file_name: str, content_type: str, directory: str = "") -> SignedCapability:
        return await self._api(
            "POST",
            "/objects/presign",
            lambda payload: _parse_capability(payload, "PUT", "uploadUrl"),
            json={"fileName": file_name, "fileType": content_type, "directory": directory},
        )

    async def request_download(self, key: str) -> SignedCapability:
        return await self._api(
            "POST",
            "/objects/download-url",
            lambda payload: _parse_capability(payload, "GET", "downloadUrl"),
            json={"key": key},
        )

    async def delete_object(self, key: str) -> DeleteResult:
        return await self._api("DELETE", "/objects", DeleteResult.model_validate, json={"file": {"key": key}})

    # Storage calls carry no session header: the signature in the URL is the
    # only credential and extra auth headers would invalidate it.

    async def put_object(self, capability: SignedCapability, body: bytes, content_type: str) -> None:
        key = capability.key
        try:
            response = await self.http.put(capability.url, content=body, headers={"Content-Type": content_type})
        except httpx.HTTPError as exc:
            raise TransferFailed(f"Upload to storage failed ({exc}). Key: {key}", key) from exc
        if response.is_error:
            raise TransferFailed(f"Storage upload failed with status {response.status_code}. Key: {key}", key)

    async def fetch_object(self, record: ObjectRecord) -> bytes:
        key = record.key
        try:
            response = await self.http.get(record.download_url)
        except httpx.HTTPError as exc:
            raise TransferFailed(f"Download from storage failed ({exc}). Key: {key}", key) from exc
        if response.is_error:
            raise TransferFailed(f"Storage download failed with status {response.status_code}. Key: {key}", key)
        return response.content


class UploadState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    REQUESTING_CAPABILITY = "requesting_capability"
    TRANSFERRING = "transferring"
    DONE = "done"
    FAILED = "failed"


class UploadTask:
    """One upload: IDLE -> STAGED -> REQUESTING_CAPABILITY -> TRANSFERRING -> DONE | FAILED."""

    def __init__(
        self,
        client: FileManagerClient,
        *,
        notify: Callable[[Notification], None] = log_notification,
        on_done: Callable[[], Awaitable[object]] | None = None,
    ):
        self.client = client
        self.notify = notify
        self.on_done = on_done
        self.state = UploadState.IDLE
        self.file: LocalFile | None = None
        self.file_name = ""
        self.content_type = ""
        self.directory = ""
        self.key: str | None = None
        self.error: str | None = None

    def stage(self, local_file: LocalFile) -> None:
        if self.state is not UploadState.IDLE:
            raise RuntimeError(f"cannot stage a file while {self.state.value}")
        self.file = local_file
        self.file_name = local_file.name
        self.content_type = local_file.content_type
        self.state = UploadState.STAGED

    def _fail(self, message: str) -> UploadState:
        self.state = UploadState.FAILED
        self.error = message
        self.notify(Notification("error", message))
        return self.state

    async def confirm(self, file_name: str | None = None, directory: str | None = None) -> UploadState:
        if self.state is not UploadState.STAGED:
            raise RuntimeError(f"cannot confirm an upload while {self.state.value}")
        if file_name is not None:
            self.file_name = file_name
        if directory is not None:
            self.directory = directory

        body = self.file.body
        # the staged file is released whatever the outcome; there is no retry
        self.file = None

        self.state = UploadState.REQUESTING_CAPABILITY
        self.notify(Notification("info", f"Requesting upload URL for {self.file_name}..."))
        try:
            capability = await self.client.request_upload(self.file_name, self.content_type, self.directory)
        except FileManagerError as exc:
            return self._fail(f"Upload failed: {exc.message}")

        self.key = capability.key
        self.state = UploadState.TRANSFERRING
        self.notify(Notification("info", f"Uploading {self.file_name} directly to storage..."))
        try:
            await self.client.put_object(capability, body, self.content_type)
        except TransferFailed as exc:
            return self._fail(f"Upload failed: {exc.message}")

        self.state = UploadState.DONE
        self.notify(Notification("success", f"Upload of {self.file_name} successful!"))
        if self.on_done is not None:
            await self.on_done()
        return self.state


class FileBrowser:
    def __init__(
        self,
        client: FileManagerClient,
        *,
        notify: Callable[[Notification], None] = log_notification,
    ):
        self.client = client
        self.notify = notify
        self.records: list[ObjectRecord] = []

    async def refresh(self) -> bool:
        self.notify(Notification("info", "Fetching file list..."))
        try:
            records = await self.client.list_objects()
        except FileManagerError as exc:
            self.notify(Notification("error", f"Could not retrieve file list. {exc.message}"))
            return False
        self.records = records
        self.notify(Notification("success", "Files loaded successfully."))
        return True

    def stage(self, local_file: LocalFile) -> UploadTask:
        task = UploadTask(self.client, notify=self.notify, on_done=self.refresh)
        task.stage(local_file)
        return task

    async def upload(
        self,
        local_file: LocalFile,
        file_name: str | None = None,
        directory: str | None = None,
    ) -> UploadTask:
        task = self.stage(local_file)
        await task.confirm(file_name=file_name, directory=directory)
        return task

    def download_url(self, record: ObjectRecord) -> str | None:
        if not record.download_url:
            self.notify(Notification("error", f"No download URL available for {record.key}"))
            return None
        return record.download_url

    async def download(self, record: ObjectRecord) -> bytes | None:
        if self.download_url(record) is None:
            return None
        try:
            return await self.client.fetch_object(record)
        except TransferFailed as exc:
            self.notify(Notification("error", exc.message))
            return None

    async def delete(self, record: ObjectRecord) -> bool:
        self.notify(Notification("info", f"Deleting {record.key}"))
        try:
            await self.client.delete_object(record.key)
        except FileManagerError as exc:
            self.notify(Notification("error", f"Could not delete file. {exc.message}"))
            return False
        self.records = remove_by_key(self.records, record.key)
        self.notify(Notification("success", "File deleted successfully."))
        return True

    def tree(self, query: str = "") -> list[Node]:
        return build_tree(filter_records(self.records, query))
