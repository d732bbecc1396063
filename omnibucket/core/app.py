from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from omnibucket.core.metadata_store import (
    BucketRepository,
    MetadataStore,
    ProviderRepository,
    UploadHistoryRepository,
)
from omnibucket.core.settings_store import UploadSettingsStore
from omnibucket.core.task_manager import UploadTaskRegistry
from omnibucket.core.upload_orchestrator import UploadOrchestrator, UploadRunSummary, add_files
from omnibucket.models.provider import Provider
from omnibucket.models.upload_models import UploadFileItem, UploadOptions, UploadSource
from omnibucket.services.image_processing import ImageProcessor
from omnibucket.services.storage_service import StorageService
from omnibucket.storage.file_utils import file_utils
from omnibucket.utils.env_config import AppSettings, get_settings

logger = structlog.get_logger(__name__)


class StorageApp:
    """Main application class wiring stores, storage service and uploads together."""

    def __init__(self, settings: Optional[AppSettings] = None) -> None:
        """Initialize the application."""
        if settings is None:
            try:
                settings = get_settings()
                logger.info("Configuration loaded successfully")
            except Exception as e:
                logger.warning(f"Config loading failed, using defaults: {e}")
                settings = AppSettings()
        self.settings = settings

        self.settings.data_dir.mkdir(parents=True, exist_ok=True)

        # Persistence
        self.metadata_store = MetadataStore(self.settings.metadata_file)
        self.providers = ProviderRepository(self.metadata_store)
        self.buckets = BucketRepository(self.metadata_store)
        self.history = UploadHistoryRepository(self.metadata_store)
        self.upload_settings = UploadSettingsStore(self.settings.settings_file)

        # Services
        self.storage_service = StorageService(
            provider_repository=self.providers,
            bucket_repository=self.buckets,
            history_repository=self.history,
            signed_url_expires_in=self.settings.signed_url_expires_in,
            download_chunk_size=self.settings.download_chunk_size,
            download_timeout=self.settings.download_timeout,
        )
        self.image_processor = ImageProcessor()
        self.task_registry = UploadTaskRegistry()
        self.orchestrator = UploadOrchestrator(
            self.storage_service,
            self.task_registry,
            history_repository=self.history,
            settings_store=self.upload_settings,
            compress=self.image_processor.compress_image,
            blurhash=self.image_processor.generate_blurhash,
            image_info=self.image_processor.get_image_info,
            preset_name=self.image_processor.get_preset_name,
            max_concurrent=self.settings.upload_max_concurrent,
        )

    def get_provider(self, provider_id: str) -> Provider:
        provider = self.providers.find_by_id(provider_id)
        if provider is None:
            raise ValueError(f"Unknown provider: {provider_id}")
        return provider

    def add_provider(self, data: Dict[str, Any]) -> Provider:
        return self.providers.create(data)

    def default_upload_options(self, keep_original: Optional[bool] = None) -> UploadOptions:
        """Upload options from the environment, overridden by stored preferences."""
        generate_blurhash = (
            self.settings.upload_generate_blurhash or self.upload_settings.settings.default_generate_blurhash
        )
        return UploadOptions(
            keep_original=self.settings.upload_keep_original if keep_original is None else keep_original,
            generate_blurhash=generate_blurhash,
        )

    def load_files(self, paths: List[Path], preset_id: Optional[str] = None) -> List[UploadFileItem]:
        """Read local files into an upload selection, skipping duplicates."""
        selection: List[UploadFileItem] = []
        for path in paths:
            path = Path(path).expanduser()
            item = UploadFileItem(
                filename=path.name,
                content=path.read_bytes(),
                content_type=file_utils.get_mime_type(path.name),
                preset_id=preset_id,
                last_modified=path.stat().st_mtime,
                source=UploadSource.APP,
            )
            selection = add_files(selection, [item])
        return selection

    async def upload_paths(
        self,
        provider_id: str,
        bucket: str,
        prefix: str,
        paths: List[Path],
        preset_id: Optional[str] = None,
        options: Optional[UploadOptions] = None,
    ) -> UploadRunSummary:
        provider = self.get_provider(provider_id)
        files = self.load_files(paths, preset_id=preset_id)
        return await self.orchestrator.upload(provider, bucket, prefix, files, options or self.default_upload_options())

    async def shutdown(self) -> None:
        """Shutdown the application and clean up resources."""
        logger.info("Shutting down Omnibucket")
        await self.orchestrator.shutdown()
        self.metadata_store.save()
        logger.info("Application shutdown completed")
