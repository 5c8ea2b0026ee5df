import logging
from collections.abc import Callable, Iterator
from typing import Literal

from app.config import Settings
from app.errors import Forbidden, InvalidRequest, Unauthenticated
from app.keys import build_key, current_millis
from app.models import DeleteResult, Identity, ObjectPage, ObjectRecord, SignedCapability, UploadIntent
from app.storage import S3BucketStorage

logger = logging.getLogger(__name__)


class FileService:
    """Mints signed capabilities and runs the privileged list/delete calls.

    Object bytes never pass through here: uploads and downloads go straight
    to storage through the URLs this service hands out.
    """

    def __init__(
        self,
        settings: Settings,
        storage: S3BucketStorage,
        clock: Callable[[], int] = current_millis,
    ):
        self.settings = settings
        self.storage = storage
        self.clock = clock

    def _mint(
        self,
        method: Literal["PUT", "GET"],
        key: str,
        ttl_seconds: int,
        content_type: str | None = None,
    ) -> SignedCapability:
        issued_at = self.clock() // 1000
        url = self.storage.presign(method, key, expires_in=ttl_seconds, content_type=content_type)
        return SignedCapability(url=url, key=key, method=method, expires_at=issued_at + ttl_seconds)

    def _record(self, item: dict) -> ObjectRecord:
        key = item["Key"]
        return ObjectRecord(
            key=key,
            size=item.get("Size", 0),
            last_modified=item["LastModified"],
            download_url=self._mint("GET", key, self.settings.download_ttl_seconds).url,
        )

    def iter_object_pages(self, cursor: str | None = None, page_size: int | None = None) -> Iterator[ObjectPage]:
        """Lazily walk the bucket listing one page at a time.

        Feeding a page's ``next_cursor`` back in resumes the walk from there.
        """
        size = page_size or self.settings.list_page_size
        for contents, next_cursor in self.storage.iter_pages(page_size=size, cursor=cursor):
            yield ObjectPage(objects=[self._record(item) for item in contents], next_cursor=next_cursor)

    def list_objects(self) -> list[ObjectRecord]:
        return [record for page in self.iter_object_pages() for record in page.objects]

    def mint_upload_capability(self, intent: UploadIntent) -> SignedCapability:
        if not intent.file_name or not intent.content_type:
            raise InvalidRequest("Missing fileName or fileType")

        key = build_key(
            intent.directory,
            intent.file_name,
            self.clock(),
            self.settings.key_timestamp_position,
        )
        capability = self._mint("PUT", key, self.settings.upload_ttl_seconds, intent.content_type)
        logger.info("Minted upload capability for %s (%s)", key, intent.content_type)
        return capability

    def mint_download_capability(self, key: str | None) -> SignedCapability:
        if not key:
            raise InvalidRequest("Missing key")
        return self._mint("GET", key, self.settings.download_ttl_seconds)

    def delete_object(self, key: str | None, caller: Identity | None) -> DeleteResult:
        if caller is None:
            raise Unauthenticated("Not authenticated")
        if caller.role != self.settings.admin_role:
            logger.warning("Rejected delete of %s by %s (role %s)", key, caller.user_id, caller.role)
            raise Forbidden(f"Forbidden: user does not have '{self.settings.admin_role}' privileges.")
        if not key:
            raise InvalidRequest("Missing key")

        self.storage.delete(key)
        logger.info("Deleted %s on behalf of %s", key, caller.user_id)
        return DeleteResult(success=True, key=key)
