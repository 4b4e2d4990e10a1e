from __future__ import annotations

import os
import tempfile
from urllib.parse import quote

from ..errors import NotFoundError
from ..logging import get_logger
from ..paths import safe_join


LOG = get_logger("storage-objects")


class FileObjectStore:
    """Blob storage on the local filesystem, addressed by storage path.

    Download URLs point at the web app's ``/files/{path}`` route.
    """

    def __init__(self, root_dir: str, *, public_base_url: str) -> None:
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def _abs(self, storage_path: str) -> str:
        return safe_join(self.root_dir, storage_path)

    def download_url(self, storage_path: str) -> str:
        return f"{self.public_base_url}/files/{quote(storage_path)}"

    def put(self, storage_path: str, data: bytes) -> str:
        """Write ``data`` atomically and return its download URL."""
        target = self._abs(storage_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(target), prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        LOG.info(f"Stored {len(data)} bytes at {storage_path}")
        return self.download_url(storage_path)

    def get(self, storage_path: str) -> bytes:
        target = self._abs(storage_path)
        if not os.path.isfile(target):
            raise NotFoundError("File", storage_path)
        with open(target, "rb") as fh:
            return fh.read()

    def exists(self, storage_path: str) -> bool:
        return os.path.isfile(self._abs(storage_path))

    def delete(self, storage_path: str) -> None:
        target = self._abs(storage_path)
        try:
            os.remove(target)
        except FileNotFoundError:
            LOG.warning(f"Delete requested for missing object {storage_path}; nothing to remove")
            return
        LOG.info(f"Deleted object {storage_path}")
