from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Bucketed file storage with public URLs served under /media."""

    def __init__(self, media_dir: str, public_base_url: str = "") -> None:
        self.media_dir = Path(media_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, bucket: str, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"bad object name: {name!r}")
        return self.media_dir / bucket / name

    def upload(self, bucket: str, name: str, data: bytes) -> str:
        p = self._path(bucket, name)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        logger.info("stored %s/%s (%d bytes)", bucket, name, len(data))
        return name

    def public_url(self, bucket: str, name: str) -> str:
        return f"{self.public_base_url}/media/{bucket}/{name}"

    def exists(self, bucket: str, name: str) -> bool:
        return self._path(bucket, name).exists()

    def remove(self, bucket: str, name: str) -> None:
        try:
            os.remove(self._path(bucket, name))
        except FileNotFoundError:
            pass
