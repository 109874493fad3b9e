from __future__ import annotations

import hashlib
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional

import httpx
from fastapi import UploadFile

from vidtube.config import Settings
from vidtube.logging import get_logger
from vidtube.service.errors import ValidationError

logger = get_logger(__name__)


def _safe_filename(raw: Optional[str]) -> str:
    # Strip path separators and anything outside a conservative charset
    name = re.sub(r"[^\w\-_\. ]", "_", raw or "upload")
    name = name.lstrip(".")[:200]
    return name or "upload"


class MediaService:
    """Image hosting for avatars and cover images.

    With Cloudinary credentials configured, files go to Cloudinary's upload
    API. Otherwise the service runs in placeholder mode and copies files to
    ``<fs_root>/media`` so development and CI work offline.

    ``upload`` always removes the staged local file, whether or not the
    upload succeeded.
    """

    CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"

    def __init__(
        self,
        fs_root: str,
        tmp_dir: Path,
        *,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self.fs_root = Path(fs_root)
        self.tmp_dir = Path(tmp_dir)
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.max_upload_bytes = max_upload_bytes
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaService":
        return cls(
            settings.shared_fs_root,
            settings.tmp_dir,
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            max_upload_bytes=settings.max_upload_bytes,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def save_upload(self, upload: UploadFile) -> Path:
        """Stage a multipart upload as ``<epoch_ms>-<name>`` in the temp dir."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        contents = await upload.read(self.max_upload_bytes + 1)
        if len(contents) > self.max_upload_bytes:
            raise ValidationError(
                "file too large", detail={"max_bytes": self.max_upload_bytes}
            )
        dest = self.tmp_dir / f"{int(time.time() * 1000)}-{_safe_filename(upload.filename)}"
        dest.write_bytes(contents)
        return dest

    def discard(self, path: Optional[Path | str]) -> None:
        if not path:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("temp_file_cleanup_failed", path=str(path), error=str(exc))

    def _signature(self, params: dict) -> str:
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    async def upload(self, local_path: Optional[Path | str]) -> Optional[str]:
        """Upload a staged file and return its public URL, or None on failure."""
        if not local_path:
            return None
        path = Path(local_path)
        try:
            if not path.is_file():
                logger.warning("media_upload_missing_file", path=str(path))
                return None
            if not self.is_configured:
                return self._placeholder_upload(path)
            return await self._cloudinary_upload(path)
        finally:
            self.discard(path)

    async def _cloudinary_upload(self, path: Path) -> Optional[str]:
        params = {"timestamp": str(int(time.time()))}
        data = {
            **params,
            "api_key": self.api_key,
            "signature": self._signature(params),
        }
        try:
            client = await self._get_client()
            with path.open("rb") as fh:
                response = await client.post(
                    f"{self.CLOUDINARY_API_BASE}/{self.cloud_name}/auto/upload",
                    data=data,
                    files={"file": (path.name, fh)},
                )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "media_upload_api_error",
                status_code=exc.response.status_code,
                error=str(exc),
            )
            return None
        except httpx.HTTPError as exc:
            logger.error("media_upload_failed", error_type=type(exc).__name__, error=str(exc))
            return None
        except ValueError as exc:
            logger.error("media_upload_bad_response", error=str(exc))
            return None
        if not isinstance(body, dict):
            logger.error("media_upload_bad_response", body_type=type(body).__name__)
            return None
        url = body.get("secure_url") or body.get("url")
        logger.info("media_upload_success", public_id=body.get("public_id"))
        return url

    def _placeholder_upload(self, path: Path) -> Optional[str]:
        media_dir = self.fs_root / "media"
        name = f"{uuid.uuid4().hex}-{path.name}"
        try:
            media_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, media_dir / name)
        except OSError as exc:
            logger.error("media_upload_placeholder_failed", error=str(exc))
            return None
        logger.info("media_upload_placeholder", name=name)
        return f"/media/{name}"
