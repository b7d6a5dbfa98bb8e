from __future__ import annotations

import mimetypes
import os
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

from catalogclone.core.config import Settings
from catalogclone.core.path_safety import resolve_under_root, validate_storage_key

_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "avif", "svg"}


class AssetStorage:
    """Filesystem object store publishing files under a public base URL."""

    def __init__(self, settings: Settings):
        self._root = settings.assets_root
        self._public_base_url = settings.asset_public_base_url

    @property
    def root(self) -> Path:
        return self._root

    def _extension_for(self, source_url: str, content_type: str | None) -> str:
        suffix = Path(urlparse(source_url).path).suffix.lower().lstrip(".")
        if suffix in _IMAGE_EXTENSIONS:
            return suffix
        if content_type:
            guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
            if guessed and guessed.lstrip(".") in _IMAGE_EXTENSIONS:
                return guessed.lstrip(".")
        return "jpg"

    def build_key(self, *, owner_id: str, source_url: str, content_type: str | None = None) -> str:
        extension = self._extension_for(source_url, content_type)
        key = f"products/{owner_id}/{uuid4().hex}.{extension}"
        validate_storage_key(key)
        return key

    def resolve_path(self, key: str) -> Path:
        return resolve_under_root(self._root, key)

    def public_url(self, key: str) -> str:
        validate_storage_key(key)
        return f"{self._public_base_url}/{key}"

    def store(self, key: str, data: bytes) -> str:
        target = self.resolve_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f".{target.name}.partial")
        partial.write_bytes(data)
        os.replace(partial, target)
        return self.public_url(key)

    def exists(self, key: str) -> bool:
        return self.resolve_path(key).is_file()
