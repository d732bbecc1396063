"""
Local metadata persistence for providers, bucket settings and upload history.

All rows live in one JSON document. Each repository reads and writes its
own section through the shared MetadataStore, which saves the document
after every mutation. Without a path the store stays in memory.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from omnibucket.models.provider import Provider, apply_provider_update, parse_provider, utc_now
from omnibucket.models.upload_models import (
    BucketRecord,
    HistoryItemType,
    HistoryListFilters,
    HistoryPage,
    HistoryStats,
    UploadHistoryRecord,
    UploadSource,
    UploadStatus,
)

logger = structlog.get_logger(__name__)

SECTIONS = ("providers", "buckets", "history")


class MetadataStore:
    """JSON document holding every persisted row, keyed by section and id."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {section: {} for section in SECTIONS}
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self) -> None:
        """Load the document from disk."""
        try:
            if self.path.exists():
                with open(self.path, "r") as f:
                    loaded = json.load(f)
                for section in SECTIONS:
                    self.data[section] = loaded.get(section, {})
                logger.info(
                    f"Loaded metadata with {len(self.data['providers'])} providers "
                    f"and {len(self.data['history'])} history records"
                )
        except Exception as e:
            logger.error(f"Failed to load metadata from {self.path}: {e}")

    def save(self) -> None:
        """Save the document to disk."""
        if self.path is None:
            return
        try:
            with open(self.path, "w") as f:
                json.dump(self.data, f, indent=2, default=str)
        except Exception as e:
            logger.error(f"Failed to save metadata: {e}")

    def section(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.data[name]


class ProviderRepository:
    """Stored provider descriptors."""

    def __init__(self, store: MetadataStore):
        self.store = store
        self.rows = store.section("providers")

    def find_all(self) -> List[Provider]:
        """All providers, most recently used first."""
        providers = [parse_provider(row) for row in self.rows.values()]
        return sorted(providers, key=lambda p: p.last_operation_at or p.created_at, reverse=True)

    def find_by_id(self, provider_id: str) -> Optional[Provider]:
        row = self.rows.get(provider_id)
        return parse_provider(row) if row else None

    def create(self, data: Dict[str, Any]) -> Provider:
        provider = parse_provider(data)
        if provider.id in self.rows:
            raise ValueError(f"Provider {provider.id} already exists")
        self.rows[provider.id] = provider.model_dump(mode="json")
        self.store.save()
        logger.info("Provider created", provider_id=provider.id, provider_type=provider.type)
        return provider

    def update(self, provider_id: str, changes: Dict[str, Any]) -> Optional[Provider]:
        """Update name, bucket hint and the variant's own credentials."""
        current = self.find_by_id(provider_id)
        if current is None:
            return None
        updated = apply_provider_update(current, changes)
        self.rows[provider_id] = updated.model_dump(mode="json")
        self.store.save()
        return updated

    def delete(self, provider_id: str) -> bool:
        if self.rows.pop(provider_id, None) is None:
            return False
        self.store.save()
        return True

    def update_last_operation_at(self, provider_id: str) -> None:
        row = self.rows.get(provider_id)
        if row is None:
            return
        row["last_operation_at"] = utc_now().isoformat()
        self.store.save()


class BucketRepository:
    """App-level bucket settings, unique on (provider_id, name)."""

    def __init__(self, store: MetadataStore):
        self.store = store
        self.rows = store.section("buckets")

    def find_by_provider_and_name(self, provider_id: str, name: str) -> Optional[BucketRecord]:
        for row in self.rows.values():
            if row["provider_id"] == provider_id and row["name"] == name:
                return BucketRecord.model_validate(row)
        return None

    def find_by_provider_id(self, provider_id: str) -> List[BucketRecord]:
        return [BucketRecord.model_validate(row) for row in self.rows.values() if row["provider_id"] == provider_id]

    def create_or_update(self, provider_id: str, name: str, custom_domain: Optional[str]) -> BucketRecord:
        record = self.find_by_provider_and_name(provider_id, name)
        if record is None:
            record = BucketRecord(provider_id=provider_id, name=name, custom_domain=custom_domain)
        else:
            record.custom_domain = custom_domain
            record.updated_at = utc_now()
        self.rows[record.id] = record.model_dump(mode="json")
        self.store.save()
        return record

    def delete(self, provider_id: str, name: str) -> bool:
        record = self.find_by_provider_and_name(provider_id, name)
        if record is None:
            return False
        del self.rows[record.id]
        self.store.save()
        return True


class UploadHistoryRepository:
    """Upload history rows with filtering, paging and stats."""

    def __init__(self, store: MetadataStore):
        self.store = store
        self.rows = store.section("history")

    def _put(self, record: UploadHistoryRecord) -> UploadHistoryRecord:
        self.rows[record.id] = record.model_dump(mode="json")
        self.store.save()
        return record

    def get(self, record_id: str) -> Optional[UploadHistoryRecord]:
        row = self.rows.get(record_id)
        return UploadHistoryRecord.model_validate(row) if row else None

    def create_record(self, **fields: Any) -> UploadHistoryRecord:
        """Create a row; callers usually pass status ``uploading`` or ``compressing``."""
        return self._put(UploadHistoryRecord(**fields))

    def record_upload(
        self,
        provider_id: str,
        bucket: str,
        key: str,
        name: str,
        item_type: HistoryItemType = HistoryItemType.FILE,
        size: Optional[int] = None,
        mime_type: Optional[str] = None,
        source: UploadSource = UploadSource.APP,
    ) -> UploadHistoryRecord:
        """Create a completed row for an item the app just wrote."""
        return self.create_record(
            provider_id=provider_id,
            bucket=bucket,
            key=key,
            name=name,
            type=item_type,
            size=size,
            mime_type=mime_type,
            upload_source=source,
            status=UploadStatus.COMPLETED,
        )

    def update_status(
        self,
        record_id: str,
        status: UploadStatus,
        error_message: Optional[str] = None,
        size: Optional[int] = None,
    ) -> Optional[UploadHistoryRecord]:
        record = self.get(record_id)
        if record is None:
            logger.warning("History record not found", record_id=record_id)
            return None
        record.status = status
        record.error_message = error_message
        if size is not None:
            record.size = size
        return self._put(record)

    def delete_record(self, record_id: str) -> bool:
        if self.rows.pop(record_id, None) is None:
            return False
        self.store.save()
        return True

    def _delete_where(self, predicate) -> int:
        doomed = [record_id for record_id, row in self.rows.items() if predicate(row)]
        for record_id in doomed:
            del self.rows[record_id]
        if doomed:
            self.store.save()
        return len(doomed)

    def delete_by_key(self, provider_id: str, bucket: str, key: str) -> int:
        return self._delete_where(
            lambda row: row["provider_id"] == provider_id and row["bucket"] == bucket and row["key"] == key
        )

    def delete_by_keys(self, provider_id: str, bucket: str, keys: List[str]) -> int:
        key_set = set(keys)
        return self._delete_where(
            lambda row: row["provider_id"] == provider_id and row["bucket"] == bucket and row["key"] in key_set
        )

    def delete_by_prefix(self, provider_id: str, bucket: str, prefix: str) -> int:
        return self._delete_where(
            lambda row: row["provider_id"] == provider_id and row["bucket"] == bucket and row["key"].startswith(prefix)
        )

    def find_in_status(self, status: UploadStatus) -> List[UploadHistoryRecord]:
        return [UploadHistoryRecord.model_validate(row) for row in self.rows.values() if row["status"] == status.value]

    def list(self, filters: Optional[HistoryListFilters] = None) -> HistoryPage:
        """Filter, sort and page the history."""
        filters = filters or HistoryListFilters()
        records = [UploadHistoryRecord.model_validate(row) for row in self.rows.values()]
        records = [record for record in records if _matches(record, filters)]

        reverse = filters.sort_direction == "desc"
        if filters.sort_by == "name":
            records.sort(key=lambda r: r.name.lower(), reverse=reverse)
        elif filters.sort_by == "size":
            records.sort(key=lambda r: r.size or 0, reverse=reverse)
        else:
            records.sort(key=lambda r: r.uploaded_at, reverse=reverse)

        start = (filters.page - 1) * filters.page_size
        return HistoryPage(
            items=records[start : start + filters.page_size],
            total=len(records),
            page=filters.page,
            page_size=filters.page_size,
        )

    def get_stats(self, provider_id: Optional[str] = None, bucket: Optional[str] = None) -> HistoryStats:
        stats = HistoryStats()
        for row in self.rows.values():
            if provider_id and row["provider_id"] != provider_id:
                continue
            if bucket and row["bucket"] != bucket:
                continue
            stats.total_count += 1
            stats.total_size += row.get("size") or 0
            if row["status"] == UploadStatus.COMPLETED.value:
                stats.completed_count += 1
            elif row["status"] == UploadStatus.ERROR.value:
                stats.error_count += 1
        return stats


def _matches(record: UploadHistoryRecord, filters: HistoryListFilters) -> bool:
    if filters.provider_id and record.provider_id != filters.provider_id:
        return False
    if filters.bucket and record.bucket != filters.bucket:
        return False
    if filters.query:
        query = filters.query.lower()
        if query not in record.name.lower() and query not in record.key.lower():
            return False
    if filters.date_from and record.uploaded_at < _aware(filters.date_from):
        return False
    if filters.date_to and record.uploaded_at > _aware(filters.date_to):
        return False
    if filters.file_types:
        mime_type = record.mime_type or ""
        if not any(mime_type.startswith(file_type) for file_type in filters.file_types):
            return False
    return True


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
