"""
Persisted upload preferences.
"""

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel

from omnibucket.models.upload_models import UploadTarget

logger = structlog.get_logger(__name__)


class LastUploadTarget(BaseModel):
    provider_id: str
    bucket: str
    prefix: str = ""


class UploadSettings(BaseModel):
    default_generate_blurhash: bool = False
    remember_last_upload_target: bool = True
    last_upload_target: Optional[LastUploadTarget] = None


class UploadSettingsStore:
    """Upload settings kept in a small JSON file."""

    def __init__(self, settings_file: Optional[Path] = None):
        self.settings_file = settings_file
        self.settings = UploadSettings()
        self._load()

    def _load(self) -> None:
        if self.settings_file is None or not self.settings_file.exists():
            return
        try:
            with open(self.settings_file, "r") as f:
                self.settings = UploadSettings.model_validate(json.load(f))
        except Exception as e:
            logger.error(f"Failed to load upload settings: {e}")
            self.settings = UploadSettings()

    def _save(self) -> None:
        if self.settings_file is None:
            return
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, "w") as f:
                json.dump(self.settings.model_dump(mode="json"), f, indent=2, default=str)
        except Exception as e:
            logger.error(f"Failed to save upload settings: {e}")

    def set_default_generate_blurhash(self, enabled: bool) -> None:
        self.settings.default_generate_blurhash = enabled
        self._save()

    def set_remember_last_upload_target(self, enabled: bool) -> None:
        """Turning this off also forgets the stored target."""
        self.settings.remember_last_upload_target = enabled
        if not enabled:
            self.settings.last_upload_target = None
        self._save()

    def save_last_upload_target(self, target: UploadTarget) -> bool:
        """Store the target if remembering is enabled."""
        if not self.settings.remember_last_upload_target:
            return False
        self.settings.last_upload_target = LastUploadTarget(
            provider_id=target.provider_id, bucket=target.bucket, prefix=target.prefix
        )
        self._save()
        return True

    def get_last_upload_target(self) -> Optional[UploadTarget]:
        stored = self.settings.last_upload_target
        if stored is None:
            return None
        return UploadTarget(provider_id=stored.provider_id, bucket=stored.bucket, prefix=stored.prefix)

    def reset(self) -> None:
        self.settings = UploadSettings()
        self._save()
