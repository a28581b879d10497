# adapters/storage.py - Photo storage backends: Cloudinary and the local filesystem
import asyncio
import base64
import functools
import logging
import mimetypes
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import cloudinary.exceptions
import cloudinary.uploader

from domain.errors import StorageUnavailable
from domain.models import ObjectStorage

logger = logging.getLogger(__name__)

_VERSION_SEGMENT = re.compile(r"^v\d+$")


@dataclass(frozen=True)
class CloudinaryConfig:
    cloud_name: Optional[str]
    api_key: Optional[str]
    api_secret: Optional[str]
    folder: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)


def cloudinary_public_id(url: str) -> str:
    """
    Public id of a delivered asset.

    https://res.cloudinary.com/demo/image/upload/v1712/locations/abc.jpg gives
    "locations/abc". URLs without an upload segment fall back to the last path
    segment without its extension.
    """
    path = urlsplit(url).path
    if "/upload/" in path:
        segments = [s for s in path.split("/upload/", 1)[1].split("/") if s]
        for i, segment in enumerate(segments):
            if _VERSION_SEGMENT.match(segment):
                segments = segments[i + 1:]
                break
    else:
        segments = [s for s in path.split("/") if s][-1:]
    if not segments:
        return ""
    segments[-1] = segments[-1].rsplit(".", 1)[0]
    return "/".join(segments)


class CloudinaryObjectStorage(ObjectStorage):
    """Uploads photos to Cloudinary; credentials are passed on every call, never set globally"""

    def __init__(self, config: CloudinaryConfig):
        self.config = config

    def _options(self) -> dict:
        if not self.config.configured:
            raise StorageUnavailable("Cloudinary credentials are not configured")
        return {
            "cloud_name": self.config.cloud_name,
            "api_key": self.config.api_key,
            "api_secret": self.config.api_secret,
            "resource_type": "image",
        }

    async def upload(self, data: bytes, content_type: str) -> str:
        options = self._options()
        if self.config.folder:
            options["folder"] = self.config.folder
        data_uri = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"

        # The SDK is blocking, run it in the default executor
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, functools.partial(cloudinary.uploader.upload, data_uri, **options)
            )
        except cloudinary.exceptions.Error as e:
            logger.error(f"Cloudinary upload failed: {e}")
            raise StorageUnavailable("Photo upload failed") from e
        return result["secure_url"]

    async def delete(self, url: str) -> None:
        public_id = cloudinary_public_id(url)
        if not public_id:
            logger.warning(f"Cannot derive a Cloudinary public id from {url}")
            return
        options = self._options()

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, functools.partial(cloudinary.uploader.destroy, public_id, **options)
            )
        except cloudinary.exceptions.Error as e:
            raise StorageUnavailable(f"Could not delete photo {url}") from e
        if result.get("result") != "ok":
            logger.warning(f"Cloudinary did not delete {public_id}: {result}")


class LocalObjectStorage(ObjectStorage):
    """Writes payloads under root_dir and serves them from base_url/<name>"""

    def __init__(self, root_dir: str, base_url: str):
        self.root_dir = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    async def upload(self, data: bytes, content_type: str) -> str:
        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".bin"
        name = f"{uuid.uuid4().hex}{extension}"
        try:
            # Run file I/O in thread to avoid blocking
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write, self.root_dir / name, data)
        except OSError as e:
            logger.error(f"Failed to store photo {name}: {e}")
            raise StorageUnavailable("Photo storage is unavailable") from e
        return f"{self.base_url}/{name}"

    async def delete(self, url: str) -> None:
        # public id is the last path segment of the URL
        name = url.rstrip("/").split("/")[-1]
        path = self.root_dir / name
        if name in ("", ".", "..") or path.parent != self.root_dir:
            logger.warning(f"Refusing to delete photo outside storage: {url}")
            return
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._unlink, path)
        except OSError as e:
            raise StorageUnavailable(f"Could not delete photo {url}") from e

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _unlink(self, path: Path) -> None:
        path.unlink(missing_ok=True)
