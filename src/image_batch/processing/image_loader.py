"""图片来源加载：URL、Base64 data URI 与本地文件。"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from image_batch.core.config import ProviderConfig
from image_batch.core.exceptions import ImageOperationError, SourceLoadError

LOGGER = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/avif",
    "image/bmp",
    "image/tiff",
}

FILE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

DATA_URI_RE = re.compile(r"^data:image/([a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)


@dataclass(slots=True)
class LoadedImage:
    """解码后的图片及其来源信息。调用者负责关闭 ``payload``。"""

    source: str
    format: str
    size_bytes: int
    payload: Image.Image


def load_source_bytes(source: str, config: Optional[ProviderConfig] = None) -> bytes:
    """根据来源类型读取原始字节。"""

    config = config or ProviderConfig()
    if source.startswith(("http://", "https://")):
        return _load_from_url(source, config)
    if source.startswith("data:image/"):
        return _load_from_data_uri(source)
    return _load_from_file(Path(source))


def load_image(source: str, config: Optional[ProviderConfig] = None) -> tuple[bytes, LoadedImage]:
    """读取并解码图片，执行 EXIF 旋转校正。"""

    data = load_source_bytes(source, config)
    return data, decode_image(source, data)


def decode_image(source: str, data: bytes) -> LoadedImage:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            image_format = (img.format or "unknown").lower()
            # EXIF Orientation 校正
            oriented = ImageOps.exif_transpose(img)
            payload = oriented.copy() if oriented is img else oriented
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像数据 %s: %s", source[:80], exc)
        raise ImageOperationError(f"无法解码图像: {exc}") from exc

    return LoadedImage(source=source, format=image_format, size_bytes=len(data), payload=payload)


def _load_from_url(url: str, config: ProviderConfig) -> bytes:
    try:
        response = httpx.get(
            url,
            timeout=config.request_timeout,
            headers={"User-Agent": config.user_agent},
            follow_redirects=True,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise SourceLoadError(f"Failed to load image from URL: {exc}") from exc

    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type not in SUPPORTED_MIME_TYPES:
        raise SourceLoadError(f"Unsupported image format: {content_type or 'unknown'}")
    return response.content


def _load_from_data_uri(data_uri: str) -> bytes:
    match = DATA_URI_RE.match(data_uri)
    if not match:
        raise SourceLoadError("Invalid base64 data URL format")

    image_format, encoded = match.groups()
    mime_type = f"image/{image_format.lower()}"
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise SourceLoadError(f"Unsupported image format: {mime_type}")

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SourceLoadError(f"Failed to load image from base64: {exc}") from exc


def _load_from_file(path: Path) -> bytes:
    path = path.expanduser()
    if path.suffix.lower() not in FILE_MIME_TYPES:
        raise SourceLoadError(f"Unsupported file format: {path.suffix or path.name}")

    try:
        return path.read_bytes()
    except OSError as exc:
        raise SourceLoadError(f"Failed to load image from file: {exc}") from exc
