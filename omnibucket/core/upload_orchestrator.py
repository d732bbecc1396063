"""
Concurrent upload orchestration.

One upload run takes the selected files and a target (provider, bucket,
prefix) and runs one plan per file under a ConcurrencyLimiter. A plan runs
its tasks one after another inside its slot:

* non-images: a single task uploading the file under its own name
* images with a preset: compress, then upload ``{base}_{preset name}_{w}x{h}.{ext}``
* images without a preset, or with "keep original": upload the original,
  renamed ``{base}_original_{w}x{h}.{ext}`` when a preset upload exists
* images with blurhash enabled: upload ``{base}_blurhash.webp``

Every task gets an upload-history record in ``uploading`` status before its
upload starts; the record is settled to ``completed`` or ``error`` with the
task. History writes are best-effort. One task failing never stops the
other tasks of the file, and one plan failing never stops other plans.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

import structlog

from omnibucket.core.concurrency import ConcurrencyLimiter
from omnibucket.core.task_manager import UploadTaskRegistry
from omnibucket.models.storage_models import FileMetadata
from omnibucket.models.upload_models import (
    BlurHashResult,
    CompressionResult,
    ImageInfo,
    UploadFileItem,
    UploadOptions,
    UploadStatus,
    UploadTarget,
    UploadTask,
)
from omnibucket.services.image_processing import ImageProcessor
from omnibucket.storage.file_utils import file_utils
from omnibucket.utils.validators import UploadValidator

logger = structlog.get_logger(__name__)

BLURHASH_PRESET_ID = "blurhash"
DEFAULT_MAX_CONCURRENT = 5

CompressFunction = Callable[[bytes, str, str], Awaitable[CompressionResult]]
BlurHashFunction = Callable[[bytes], Awaitable[BlurHashResult]]
ImageInfoFunction = Callable[[bytes], Awaitable[ImageInfo]]
PresetNameFunction = Callable[[str], Optional[str]]


@dataclass
class UploadRunSummary:
    """Tasks produced by one upload run, once all of them have settled."""

    tasks: List[UploadTask] = field(default_factory=list)
    failed_plans: int = 0

    @property
    def completed(self) -> int:
        return sum(1 for task in self.tasks if task.status == UploadStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for task in self.tasks if task.status == UploadStatus.ERROR)


def add_files(selection: List[UploadFileItem], files: List[UploadFileItem]) -> List[UploadFileItem]:
    """Append files to a selection, skipping ones already selected (same name, size and mtime)."""
    seen = {(item.filename, item.size, item.last_modified) for item in selection}
    merged = list(selection)
    for item in files:
        identity = (item.filename, item.size, item.last_modified)
        if identity not in seen:
            seen.add(identity)
            merged.append(item)
    return merged


class UploadOrchestrator:
    """Runs upload plans with bounded concurrency and tracks their tasks."""

    def __init__(
        self,
        storage_service: Any,
        registry: UploadTaskRegistry,
        history_repository: Any = None,
        settings_store: Any = None,
        compress: Optional[CompressFunction] = None,
        blurhash: Optional[BlurHashFunction] = None,
        image_info: Optional[ImageInfoFunction] = None,
        preset_name: Optional[PresetNameFunction] = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ):
        image_processor = ImageProcessor()
        self.storage_service = storage_service
        self.registry = registry
        self.history_repository = history_repository
        self.settings_store = settings_store
        self.compress = compress or image_processor.compress_image
        self.blurhash = blurhash or image_processor.generate_blurhash
        self.image_info = image_info or image_processor.get_image_info
        self.preset_name = preset_name or image_processor.get_preset_name
        self.max_concurrent = UploadValidator.validate_concurrency(max_concurrent)
        self._invalidation_listeners: List[Callable[[UploadTarget], None]] = []
        self._open_records: Set[str] = set()
        self._runs: Set[asyncio.Task] = set()

    def set_max_concurrent(self, value: int) -> None:
        """Change the limit used by subsequent runs."""
        self.max_concurrent = UploadValidator.validate_concurrency(value)

    def add_invalidation_listener(self, listener: Callable[[UploadTarget], None]) -> None:
        """Called after each run so cached listings and history views can refresh."""
        self._invalidation_listeners.append(listener)

    # Runs

    async def upload(
        self,
        provider: Any,
        bucket: str,
        prefix: str,
        files: List[UploadFileItem],
        options: Optional[UploadOptions] = None,
        on_complete: Optional[Callable[[UploadRunSummary], None]] = None,
    ) -> UploadRunSummary:
        """
        Upload files to ``bucket`` under ``prefix`` and wait for every plan to settle.

        Args:
            provider: Provider descriptor to upload through
            bucket: Target bucket
            prefix: Target folder; normalized to ``a/b/`` form
            files: Selected files with their per-file preset and crop
            options: Run-wide keep-original and blurhash switches
            on_complete: Called with the summary after all plans settle

        Returns:
            UploadRunSummary with every task created by the run
        """
        options = options or UploadOptions()
        target = UploadTarget(provider_id=provider.id, bucket=bucket, prefix=file_utils.normalize_prefix(prefix))
        limiter = ConcurrencyLimiter(self.max_concurrent)
        logger.info(
            f"Starting upload of {len(files)} file(s)",
            provider_id=provider.id,
            bucket=bucket,
            prefix=target.prefix,
            max_concurrent=self.max_concurrent,
        )

        thunks = [functools.partial(self._run_plan, provider, target, item, options) for item in files]
        results = await limiter.run_all(thunks)

        summary = UploadRunSummary()
        for item, result in zip(files, results):
            if isinstance(result, BaseException):
                summary.failed_plans += 1
                logger.error(f"Upload plan failed: {result}", filename=item.filename)
                continue
            summary.tasks.extend(result)

        logger.info(
            "Upload run settled",
            completed=summary.completed,
            failed=summary.failed,
            failed_plans=summary.failed_plans,
        )
        self._after_run(target, summary, on_complete)
        return summary

    def start_upload(self, *args: Any, **kwargs: Any) -> asyncio.Task:
        """Run ``upload`` in the background; ``shutdown`` cancels it."""
        run = asyncio.create_task(self.upload(*args, **kwargs))
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)
        return run

    def _after_run(
        self,
        target: UploadTarget,
        summary: UploadRunSummary,
        on_complete: Optional[Callable[[UploadRunSummary], None]],
    ) -> None:
        if self.settings_store is not None:
            try:
                self.settings_store.save_last_upload_target(target)
            except Exception as e:
                logger.warning(f"Failed to save last upload target: {e}")
        for listener in self._invalidation_listeners:
            try:
                listener(target)
            except Exception as e:
                logger.warning(f"Invalidation listener failed: {e}")
        if on_complete is not None:
            on_complete(summary)

    # Plans

    async def _run_plan(
        self, provider: Any, target: UploadTarget, item: UploadFileItem, options: UploadOptions
    ) -> List[UploadTask]:
        if not file_utils.is_image(item.filename, item.content_type):
            return [await self._run_original_task(provider, target, item, item.filename)]

        width, height = await self._dimensions(item)
        tasks: List[UploadTask] = []
        if item.preset_id:
            tasks.append(await self._run_preset_task(provider, target, item))
        if not item.preset_id or options.keep_original:
            filename = (
                file_utils.build_original_filename(item.filename, width, height) if item.preset_id else item.filename
            )
            tasks.append(await self._run_original_task(provider, target, item, filename))
        if options.generate_blurhash:
            tasks.append(await self._run_blurhash_task(provider, target, item))
        return tasks

    async def _dimensions(self, item: UploadFileItem) -> tuple[Optional[int], Optional[int]]:
        try:
            info = await self.image_info(item.content)
            return info.width, info.height
        except Exception as e:
            logger.warning(f"Could not read image dimensions: {e}", filename=item.filename)
            return None, None

    async def _run_preset_task(self, provider: Any, target: UploadTarget, item: UploadFileItem) -> UploadTask:
        task = self._add_task(target, item, item.filename, UploadStatus.COMPRESSING, preset_id=item.preset_id)
        try:
            result = await self.compress(item.cropped_content or item.content, item.preset_id, item.filename)
            if not result.success or not result.content:
                return self._fail(task, result.error or "Compression failed")

            filename = file_utils.build_preset_filename(
                item.filename,
                self._preset_label(item.preset_id),
                result.width,
                result.height,
                result.format or "webp",
            )
            content_type = f"image/{result.format or 'webp'}"
            key = target.prefix + filename
            record_id = self._create_record(
                target,
                key,
                filename,
                size=len(result.content),
                mime_type=content_type,
                item=item,
                is_compressed=True,
                preset_id=item.preset_id,
            )
            self.registry.update_task_status(
                task.id,
                status=UploadStatus.UPLOADING,
                filename=filename,
                key=key,
                compressed_size=result.compressed_size or len(result.content),
                size=len(result.content),
                db_record_id=record_id,
            )
            return await self._upload(provider, target, task, key, result.content, content_type)
        except Exception as e:
            return self._fail(task, str(e))

    def _preset_label(self, preset_id: str) -> str:
        """Display name of a preset for artifact filenames, falling back to its id."""
        try:
            return self.preset_name(preset_id) or preset_id
        except Exception as e:
            logger.warning(f"Could not resolve preset name: {e}", preset_id=preset_id)
            return preset_id

    async def _run_original_task(
        self, provider: Any, target: UploadTarget, item: UploadFileItem, filename: str
    ) -> UploadTask:
        key = target.prefix + filename
        content_type = item.content_type or file_utils.get_mime_type(item.filename)
        record_id = self._create_record(target, key, filename, size=item.size, mime_type=content_type, item=item)
        task = self._add_task(target, item, filename, UploadStatus.UPLOADING, key=key, db_record_id=record_id)
        try:
            return await self._upload(provider, target, task, key, item.content, content_type)
        except Exception as e:
            return self._fail(task, str(e))

    async def _run_blurhash_task(self, provider: Any, target: UploadTarget, item: UploadFileItem) -> UploadTask:
        filename = file_utils.build_blurhash_filename(item.filename)
        key = target.prefix + filename
        record_id = self._create_record(
            target,
            key,
            filename,
            size=None,
            mime_type="image/webp",
            item=item,
            is_compressed=True,
            preset_id=BLURHASH_PRESET_ID,
        )
        task = self._add_task(
            target,
            item,
            filename,
            UploadStatus.COMPRESSING,
            key=key,
            preset_id=BLURHASH_PRESET_ID,
            db_record_id=record_id,
        )
        try:
            result = await self.blurhash(item.content)
            self.registry.update_task_status(
                task.id,
                status=UploadStatus.UPLOADING,
                compressed_size=len(result.content),
                size=len(result.content),
            )
            return await self._upload(provider, target, task, key, result.content, "image/webp")
        except Exception as e:
            return self._fail(task, str(e))

    # Task plumbing

    def _add_task(
        self,
        target: UploadTarget,
        item: UploadFileItem,
        filename: str,
        status: UploadStatus,
        key: Optional[str] = None,
        preset_id: Optional[str] = None,
        db_record_id: Optional[str] = None,
    ) -> UploadTask:
        task = UploadTask(
            filename=filename,
            key=key or target.prefix + filename,
            provider_id=target.provider_id,
            bucket=target.bucket,
            source_file_id=item.id,
            status=status,
            size=item.size,
            original_size=item.size,
            preset_id=preset_id,
            db_record_id=db_record_id,
        )
        self.registry.add_task(task)
        return task

    async def _upload(
        self,
        provider: Any,
        target: UploadTarget,
        task: UploadTask,
        key: str,
        content: bytes,
        content_type: Optional[str],
    ) -> UploadTask:
        result = await self.storage_service.upload_file(
            provider, target.bucket, key, content, FileMetadata(content_type=content_type, size=len(content))
        )
        if not result.success:
            return self._fail(task, result.error or "Upload failed")
        self.registry.update_task_status(task.id, status=UploadStatus.COMPLETED, progress=100.0)
        self._settle_record(task.db_record_id, UploadStatus.COMPLETED, size=len(content))
        return task

    def _fail(self, task: UploadTask, message: str) -> UploadTask:
        logger.error(f"Upload task failed: {message}", task_id=task.id, key=task.key)
        self.registry.update_task_status(task.id, status=UploadStatus.ERROR, error=message)
        self._settle_record(task.db_record_id, UploadStatus.ERROR, error_message=message)
        return task

    # History

    def _create_record(
        self,
        target: UploadTarget,
        key: str,
        name: str,
        size: Optional[int],
        mime_type: Optional[str],
        item: UploadFileItem,
        is_compressed: bool = False,
        preset_id: Optional[str] = None,
    ) -> Optional[str]:
        if self.history_repository is None:
            return None
        try:
            record = self.history_repository.create_record(
                provider_id=target.provider_id,
                bucket=target.bucket,
                key=key,
                name=name,
                size=size,
                mime_type=mime_type,
                upload_source=item.source,
                is_compressed=is_compressed,
                original_size=item.size,
                compression_preset_id=preset_id,
                status=UploadStatus.UPLOADING,
            )
        except Exception as e:
            logger.warning(f"Failed to create upload history record: {e}", key=key)
            return None
        self._open_records.add(record.id)
        return record.id

    def _settle_record(
        self,
        record_id: Optional[str],
        status: UploadStatus,
        error_message: Optional[str] = None,
        size: Optional[int] = None,
    ) -> None:
        if record_id is None or self.history_repository is None:
            return
        try:
            self.history_repository.update_status(record_id, status, error_message=error_message, size=size)
        except Exception as e:
            logger.warning(f"Failed to update upload history record: {e}", record_id=record_id)
            return
        self._open_records.discard(record_id)

    async def shutdown(self) -> None:
        """Cancel background runs and mark their unfinished records as errors."""
        for run in list(self._runs):
            run.cancel()
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)
        for record_id in list(self._open_records):
            self._settle_record(record_id, UploadStatus.ERROR, error_message="Upload cancelled")
        for task in self.registry.active_tasks():
            self.registry.update_task_status(task.id, status=UploadStatus.ERROR, error="Upload cancelled")
