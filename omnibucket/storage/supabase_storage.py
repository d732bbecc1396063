"""
Supabase Storage adapter built on supabase-py.

Supabase lists one folder level per call and has no folder objects: a
folder exists while something is stored under it, so empty folders are
kept alive with a ``.keep`` sentinel. Pagination is offset based; the
cursor is the next offset as a string.
"""

from typing import Any, Optional

import structlog
from storage3.utils import StorageException
from supabase import create_client

from ..models.storage_models import BucketInfo, CreateBucketOptions
from .cloud_storage import (
    ListPage,
    ObjectEntry,
    StorageAdapter,
    StorageError,
    StoragePermissionError,
    classify_error,
)
from .file_utils import file_utils, to_iso

logger = structlog.get_logger(__name__)

FOLDER_SENTINEL = ".keep"
SUPABASE_LIST_LIMIT = 1000


def _field(item: Any, name: str) -> Any:
    """Read a field from a dict row or an SDK model."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


class SupabaseStorage(StorageAdapter):
    """Adapter for the ``supabase`` provider kind."""

    provider_type = "supabase"

    def __init__(self, provider: Any, client: Any | None = None):
        """Initialize the adapter; the Supabase client is created on first use."""
        super().__init__(provider)
        self._client = client

    @property
    def storage(self) -> Any:
        if self._client is None:
            key = self.provider.service_role_key or self.provider.anon_key
            if not key:
                raise StoragePermissionError("Supabase anon key or service role key is required", error_code="NO_KEY")
            self._client = create_client(self.provider.project_url, key)
        return self._client.storage

    # Buckets

    async def list_buckets(self) -> list[BucketInfo]:
        buckets = await self._guard("list buckets", self._run_sync(lambda: self.storage.list_buckets()))
        return [
            BucketInfo(name=_field(bucket, "name"), creation_date=to_iso(_field(bucket, "created_at")))
            for bucket in buckets or []
        ]

    async def create_bucket(self, name: str, options: CreateBucketOptions | None = None) -> None:
        # No region concept on Supabase
        await self._guard(
            f"create bucket {name}", self._run_sync(lambda: self.storage.create_bucket(name, options={"public": False}))
        )
        logger.info("Bucket created", bucket=name)

    async def delete_bucket(self, name: str) -> None:
        await self._guard(f"delete bucket {name}", self._run_sync(lambda: self.storage.delete_bucket(name)))
        logger.info("Bucket deleted", bucket=name)

    # Primitives

    async def _list_folder(self, bucket: str, prefix: str, limit: int, offset: int) -> list[Any]:
        path = prefix.rstrip("/")
        return await self._run_sync(
            lambda: self.storage.from_(bucket).list(
                path, {"limit": limit, "offset": offset, "sortBy": {"column": "name", "order": "asc"}}
            )
        )

    async def _list_page(self, bucket: str, prefix: str, cursor: Optional[str], max_keys: int) -> ListPage:
        prefix = file_utils.normalize_prefix(prefix)
        offset = int(cursor) if cursor else 0
        rows = await self._list_folder(bucket, prefix, max_keys, offset) or []

        page = ListPage()
        for row in rows:
            name = _field(row, "name")
            metadata = _field(row, "metadata")
            if metadata is None:
                page.prefixes.append(f"{prefix}{name}/")
                continue
            page.objects.append(
                ObjectEntry(
                    key=f"{prefix}{name}",
                    size=metadata.get("size"),
                    modified=_field(row, "updated_at"),
                    mime_type=metadata.get("mimetype"),
                )
            )
        page.truncated = len(rows) == max_keys
        page.next_cursor = str(offset + max_keys) if page.truncated else None
        return page

    async def _list_all_keys(self, bucket: str, prefix: str) -> list[str]:
        """Walk the folder tree below ``prefix``; Supabase has no flat listing."""
        prefix = file_utils.normalize_prefix(prefix)
        keys: list[str] = []
        folders = [prefix]
        while folders:
            current = folders.pop()
            offset = 0
            while True:
                rows = await self._list_folder(bucket, current, SUPABASE_LIST_LIMIT, offset) or []
                for row in rows:
                    name = _field(row, "name")
                    if _field(row, "metadata") is None:
                        folders.append(f"{current}{name}/")
                    else:
                        keys.append(f"{current}{name}")
                if len(rows) < SUPABASE_LIST_LIMIT:
                    break
                offset += SUPABASE_LIST_LIMIT
        return keys

    async def _put_object(self, bucket: str, key: str, content: bytes, content_type: str) -> None:
        await self._run_sync(
            lambda: self.storage.from_(bucket).upload(
                key, content, file_options={"content-type": content_type, "upsert": "true"}
            )
        )

    async def _delete_key(self, bucket: str, key: str) -> None:
        await self._run_sync(lambda: self.storage.from_(bucket).remove([key]))

    async def _delete_batch(self, bucket: str, keys: list[str]) -> dict[str, str]:
        # remove() skips missing paths and raises on real failures
        await self._run_sync(lambda: self.storage.from_(bucket).remove(keys))
        return {}

    async def _copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        await self._run_sync(lambda: self.storage.from_(bucket).copy(source_key, destination_key))

    async def _sign_url(self, bucket: str, key: str, expires_in: int) -> str:
        response = await self._run_sync(lambda: self.storage.from_(bucket).create_signed_url(key, expires_in))
        url = None
        if isinstance(response, dict):
            url = response.get("signedURL") or response.get("signedUrl") or response.get("signed_url")
        if not url:
            raise StorageError("Supabase did not return a signed URL", details={"response": response})
        return url

    async def emulate_folder(self, bucket: str, path: str) -> None:
        """Upload an empty ``.keep`` file under the folder path."""
        sentinel_key = f"{file_utils.folder_key(path)}{FOLDER_SENTINEL}"
        await self._put_object(bucket, sentinel_key, b"", "text/plain")

    # Errors

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        message = self._error_message(error)
        logger.error(f"Supabase error during {operation}: {message}")
        details = {"operation": operation}
        if isinstance(error, StorageException) and error.args and isinstance(error.args[0], dict):
            payload = error.args[0]
            status = payload.get("statusCode")
            status_code = int(status) if str(status).isdigit() else None
            return classify_error(message, payload.get("error"), status_code, details)
        return StorageError(message, details=details)

    def _error_message(self, error: Exception) -> str:
        if isinstance(error, StorageException) and error.args and isinstance(error.args[0], dict):
            payload = error.args[0]
            return payload.get("message") or payload.get("error") or str(error)
        return super()._error_message(error)


__all__ = ["SupabaseStorage", "FOLDER_SENTINEL"]
