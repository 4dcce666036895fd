"""Local artifact storage.

Artifacts are addressed by storage keys relative to ``settings.storage_root``:

- proxy renders:     ``proxy/{project_id}/v{version}_proxy.{ext}``
- export renders:    ``export/{project_id}/v{version}_final.{format}``
- archived exports:  ``archive/{export_id}_{filename}``
- in-flight renders: ``temp/{uuid}_{filename}``
- source uploads:    anywhere under ``uploads/``

Renders are written under ``temp/`` and promoted with an atomic rename, so
a partially written file never appears at an artifact key.
"""

import logging
import os
import shutil
import uuid
from pathlib import Path

from hybridedit.config import get_settings
from hybridedit.exceptions import ValidationError

logger = logging.getLogger(__name__)


class LocalStorageService:
    """Filesystem-backed storage rooted at one directory."""

    def __init__(self, base_path: str | Path | None = None) -> None:
        self.base_path = Path(base_path or get_settings().storage_root).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Key scheme
    # =========================================================================

    @staticmethod
    def proxy_key(project_id: object, version: int, ext: str = "mp4") -> str:
        return f"proxy/{project_id}/v{version}_proxy.{ext}"

    @staticmethod
    def export_key(project_id: object, version: int, format: str = "mp4") -> str:
        return f"export/{project_id}/v{version}_final.{format}"

    @staticmethod
    def archive_key(export_id: object, filename: str) -> str:
        return f"archive/{export_id}_{filename}"

    @property
    def upload_root(self) -> Path:
        return self.base_path / "uploads"

    def resolve_upload(self, file_path: str | Path) -> Path:
        """Resolve a client-supplied upload path, confined to ``uploads/``.

        Relative paths are taken relative to the upload root. Symlinks and
        ``..`` segments are resolved before the check.

        Raises:
            ValidationError: If the path escapes the upload root or is not a file
        """
        path = (self.upload_root / file_path).resolve()
        if not path.is_relative_to(self.upload_root):
            raise ValidationError(
                f"Upload path is outside the upload directory: {file_path}", field="file_path"
            )
        if not path.is_file():
            raise ValidationError(f"Upload not found: {file_path}", field="file_path")
        return path

    def temp_path(self, filename: str) -> Path:
        """Unique scratch path for an in-flight render."""
        return self._get_full_path(f"temp/{uuid.uuid4().hex}_{filename}")

    # =========================================================================
    # File operations
    # =========================================================================

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = self.base_path / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_file_path(self, storage_key: str) -> Path:
        """Get the actual file path for a key."""
        return self._get_full_path(storage_key)

    def file_exists(self, storage_key: str) -> bool:
        return (self.base_path / storage_key).is_file()

    def file_size(self, path: str | Path) -> int:
        return os.path.getsize(path)

    def promote(self, temp_path: str | Path, storage_key: str) -> Path:
        """Atomically move a finished render to its artifact key."""
        target = self._get_full_path(storage_key)
        os.replace(temp_path, target)
        return target

    def move(self, source_path: str | Path, storage_key: str) -> Path:
        """Relocate a file to a new key (may cross filesystems)."""
        target = self._get_full_path(storage_key)
        shutil.move(str(source_path), str(target))
        return target

    def delete_path(self, path: str | Path) -> int | None:
        """Delete a file, returning its size, or None if it was already gone."""
        try:
            size = os.path.getsize(path)
            os.unlink(path)
        except FileNotFoundError:
            return None
        return size

    def discard(self, path: str | Path) -> None:
        """Remove a scratch file, ignoring a missing one."""
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove scratch file {path}: {e}")
