"""
Blob and File Share Storage
===========================

Binary attachments kept on the local filesystem:

    <blob_root>/<container>/<generated name>     product images, customer id images
    <file_share_root>/<share>/<file name>         documents, contracts

Blobs get a generated name (uuid + original extension) and are addressed by
URL. Share files keep their uploaded name and are listed/downloaded by name.
"""

import logging
import shutil
import uuid
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import BinaryIO, List
from urllib.parse import urlparse

from retail.errors import InvalidOperation, NotFound

logger = logging.getLogger(__name__)


def _safe_name(name: str) -> str:
    # Strip any directory part a client sent along with the file name
    base = PurePosixPath(name.replace("\\", "/")).name
    if not base or base in (".", ".."):
        raise InvalidOperation(f"invalid file name: {name!r}")
    return base


class BlobStorage:
    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _container(self, container: str) -> Path:
        path = self.root / _safe_name(container)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def upload_file(self, container: str, filename: str, data: BinaryIO) -> str:
        """Store data under a generated name and return its URL."""
        blob_name = f"{uuid.uuid4().hex}{PurePosixPath(_safe_name(filename)).suffix.lower()}"
        with open(self._container(container) / blob_name, "wb") as out:
            shutil.copyfileobj(data, out)
        logger.info("uploaded blob %s/%s", container, blob_name)
        return f"{self.base_url}/{container}/{blob_name}"

    def delete_file(self, container: str, blob_name: str) -> None:
        path = self._container(container) / _safe_name(blob_name)
        if not path.is_file():
            raise NotFound(f"blob '{container}/{blob_name}' not found")
        path.unlink()
        logger.info("deleted blob %s/%s", container, blob_name)

    def blob_path(self, container: str, blob_name: str) -> Path:
        path = self._container(container) / _safe_name(blob_name)
        if not path.is_file():
            raise NotFound(f"blob '{container}/{blob_name}' not found")
        return path

    @staticmethod
    def name_from_url(url: str) -> str:
        return PurePosixPath(urlparse(url).path).name


class FileShareStorage:
    def __init__(self, root: Path):
        self.root = Path(root)

    def _share(self, share: str) -> Path:
        path = self.root / _safe_name(share)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def upload_file(self, share: str, filename: str, data: BinaryIO) -> str:
        name = _safe_name(filename)
        with open(self._share(share) / name, "wb") as out:
            shutil.copyfileobj(data, out)
        logger.info("uploaded file %s/%s", share, name)
        return name

    def list_files(self, share: str) -> List[str]:
        return sorted(p.name for p in self._share(share).iterdir() if p.is_file())

    def download_file(self, share: str, filename: str) -> BinaryIO:
        """Return the file contents as an in-memory stream positioned at 0."""
        path = self._share(share) / _safe_name(filename)
        if not path.is_file():
            raise NotFound(f"file '{share}/{filename}' not found")
        return BytesIO(path.read_bytes())
