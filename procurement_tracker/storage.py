"""
procurement_tracker/storage.py

Blob storage for request attachments (local filesystem bucket).

upload() returns None on failure instead of raising; the caller substitutes
a local placeholder URL and keeps going.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

from flask import Flask
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class StoredBlob:
    path: str
    url: str
    size: int


class LocalBlobStorage:
    """Stores blobs under UPLOAD_FOLDER/<request id>/<timestamp>_<name>."""

    def __init__(self, root: Optional[Union[str, Path]] = None, url_prefix: str = "/files"):
        self.root = Path(root) if root else None
        self.url_prefix = url_prefix.rstrip("/")

    def init_app(self, app: Flask) -> None:
        self.root = Path(app.config["UPLOAD_FOLDER"])

    def resolve(self, relative_path: str) -> Path:
        return self.root / relative_path

    def upload(self, request_id: str, filename: str, data: Union[bytes, BinaryIO]) -> Optional[StoredBlob]:
        if self.root is None:
            logger.warning("Blob storage has no upload folder configured")
            return None

        folder = secure_filename(request_id) or "request"
        name = secure_filename(filename) or "upload"
        relative = f"{folder}/{int(time.time() * 1000)}_{name}"
        target = self.resolve(relative)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            size = 0
            with open(target, "wb") as fh:
                if isinstance(data, (bytes, bytearray)):
                    fh.write(data)
                    size = len(data)
                else:
                    while True:
                        chunk = data.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        fh.write(chunk)
                        size += len(chunk)
        except OSError as exc:
            logger.warning("Blob upload failed for %s: %s", relative, exc)
            return None

        return StoredBlob(path=relative, url=f"{self.url_prefix}/{relative}", size=size)

    def delete(self, relative_path: str) -> bool:
        try:
            self.resolve(relative_path).unlink()
        except OSError as exc:
            logger.warning("Blob delete failed for %s: %s", relative_path, exc)
            return False
        return True
