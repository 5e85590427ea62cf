"""Blob storage for raw document text and chunk files.

Not-found reads return "" rather than raising; callers treat a missing chunk
as an empty contribution.
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol

from ..config import get_settings
from ..log import get_logger

logger = get_logger("blobs")


class BlobStore(Protocol):
    async def load_text(self, bucket: str, key: str) -> str:
        ...

    async def put_text(self, bucket: str, key: str, content: str, content_type: str = "text/plain") -> None:
        ...


class LocalBlobStore:
    """Filesystem-backed blob store: <root>/<bucket>/<key>."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or get_settings().BLOB_ROOT)

    def _path(self, bucket: str, key: str) -> Path:
        path = (self.root / bucket / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes the store root: {key!r}")
        return path

    def _read(self, bucket: str, key: str) -> str:
        path = self._path(bucket, key)
        if not path.exists():
            logger.warning(f"Blob not found: {bucket}/{key}")
            return ""
        return path.read_text(encoding="utf-8")

    def _write(self, bucket: str, key: str, content: str) -> None:
        path = self._path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    async def load_text(self, bucket: str, key: str) -> str:
        return await asyncio.to_thread(self._read, bucket, key)

    async def put_text(self, bucket: str, key: str, content: str, content_type: str = "text/plain") -> None:
        # content_type only matters to object stores; files carry no metadata
        await asyncio.to_thread(self._write, bucket, key, content)
