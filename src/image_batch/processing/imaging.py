"""基于 Pillow / OpenCV 的默认操作提供者。"""

from __future__ import annotations

import asyncio
import base64
import colorsys
import io
import logging
import uuid
from pathlib import Path
from typing import Any, Mapping, Optional

import cv2
import numpy as np
from PIL import Image

from image_batch.core.config import ProviderConfig
from image_batch.core.exceptions import ImageOperationError
from image_batch.core.statistics import round_half_up
from image_batch.processing.image_loader import load_image
from image_batch.utils.colors import parse_background_color, rgb_to_hex

LOGGER = logging.getLogger(__name__)

_RESAMPLING = getattr(Image, "Resampling", Image)

TARGET_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "bmp": "BMP",
    "tiff": "TIFF",
    "avif": "AVIF",
}

COMPRESSION_ALGORITHMS = {
    "mozjpeg": "jpeg",
    "jpeg": "jpeg",
    "webp": "webp",
    "avif": "avif",
}

# 取色前先缩小图片，控制 k-means 的样本量
COLOR_SAMPLE_SIZE = (100, 100)
KMEANS_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 20, 1.0)


class PillowProvider:
    """实现 analyze / compress / convert / extract_colors 四种操作。

    解码与编码都是 CPU 密集的同步调用，统一通过 ``asyncio.to_thread``
    放到线程中执行，使同一窗口内的多个条目可以真正重叠。
    """

    def __init__(self, config: Optional[ProviderConfig] = None, logger: Optional[logging.Logger] = None) -> None:
        self.config = config or ProviderConfig()
        self.logger = logger or LOGGER

    async def analyze(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.analyze_sync, source, options)

    async def compress(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.compress_sync, source, options)

    async def convert(self, source: str, target_format: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.convert_sync, source, target_format, options)

    async def extract_colors(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.extract_colors_sync, source, options)

    def analyze_sync(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        """读取图片元数据并给出基础分析。"""

        _, loaded = load_image(source, self.config)
        image = loaded.payload
        try:
            width, height = image.size
            bands = image.getbands()
            result: dict[str, Any] = {
                "metadata": {
                    "width": width,
                    "height": height,
                    "format": loaded.format,
                    "mode": image.mode,
                    "size": loaded.size_bytes,
                    "hasAlpha": "A" in bands or "transparency" in image.info,
                    "channels": len(bands),
                },
                "analysis": describe_dimensions(width, height),
            }
            if options.get("includeColors", True):
                rgb = _to_rgb_array(image)
                result["colors"] = {
                    "averageColor": rgb_to_hex(rgb.reshape(-1, 3).mean(axis=0)),
                    "dominant": [color["hex"] for color in _dominant_colors(rgb, 5)],
                }
            return result
        finally:
            image.close()

    def compress_sync(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        """按算法与质量重新编码图片。"""

        algorithm = str(options.get("algorithm") or "mozjpeg").lower()
        output_ext = COMPRESSION_ALGORITHMS.get(algorithm)
        if output_ext is None:
            raise ImageOperationError(f"不支持的压缩算法: {algorithm}")
        quality = _int_option(options, "quality", 80)

        data, loaded = load_image(source, self.config)
        image = loaded.payload
        try:
            max_width = options.get("maxWidth")
            max_height = options.get("maxHeight")
            if max_width or max_height:
                # thumbnail 只缩小不放大，保持宽高比
                image.thumbnail((int(max_width or image.width), int(max_height or image.height)), _RESAMPLING.LANCZOS)

            encoded = encode_image(image, TARGET_FORMATS[output_ext], quality=quality, options=options)
            result: dict[str, Any] = {
                "originalSize": len(data),
                "compressedSize": len(encoded),
                "compressionRatio": round_half_up((1 - len(encoded) / len(data)) * 100) if data else 0,
                "format": output_ext,
                "quality": quality,
                "metadata": {"width": image.width, "height": image.height, "algorithm": algorithm},
            }
            result.update(self._deliver(encoded, output_ext, options))
            return result
        finally:
            image.close()

    def convert_sync(self, source: str, target_format: str, options: Mapping[str, Any]) -> dict[str, Any]:
        """转换为目标格式。"""

        target = str(target_format).lower()
        pil_format = TARGET_FORMATS.get(target)
        if pil_format is None:
            raise ImageOperationError(f"不支持的目标格式: {target_format}")
        quality = _int_option(options, "quality", 90)
        progressive = bool(options.get("progressive", False))

        data, loaded = load_image(source, self.config)
        image = loaded.payload
        try:
            encoded = encode_image(image, pil_format, quality=quality, progressive=progressive, options=options)
            result: dict[str, Any] = {
                "originalFormat": loaded.format,
                "targetFormat": target,
                "originalSize": len(data),
                "convertedSize": len(encoded),
                "metadata": {
                    "width": image.width,
                    "height": image.height,
                    "quality": quality,
                    "progressive": progressive,
                },
            }
            result.update(self._deliver(encoded, "jpeg" if target == "jpg" else target, options))
            return result
        finally:
            image.close()

    def extract_colors_sync(self, source: str, options: Mapping[str, Any]) -> dict[str, Any]:
        """提取主色调与整体颜色统计。"""

        color_count = max(1, _int_option(options, "colorCount", 5))
        include_hsl = options.get("includeHsl", True) is not False

        _, loaded = load_image(source, self.config)
        image = loaded.payload
        try:
            rgb = _to_rgb_array(image)
        finally:
            image.close()

        dominant = _dominant_colors(rgb, color_count, include_hsl=include_hsl)
        pixels = rgb.reshape(-1, 3).astype(np.float32)
        average = pixels.mean(axis=0)
        luminance = pixels @ np.array([0.299, 0.587, 0.114], dtype=np.float32)
        hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)

        return {
            "dominantColors": dominant,
            "statistics": {
                "totalColors": int(len(np.unique(rgb.reshape(-1, 3), axis=0))),
                "averageColor": _color_info(average, include_hsl=include_hsl),
                "brightness": round_half_up(float(luminance.mean()) / 255 * 100),
                "contrast": min(100, round_half_up(float(luminance.std()) / 127.5 * 100)),
                "saturation": round_half_up(float(hsv[..., 1].mean()) / 255 * 100),
            },
            "temperature": _temperature(average),
        }

    def _deliver(self, encoded: bytes, extension: str, options: Mapping[str, Any]) -> dict[str, Any]:
        """根据 outputFormat 返回 data URI、原始字节或写入文件。"""

        output_format = options.get("outputFormat") or "base64"
        if output_format == "buffer":
            return {"buffer": encoded}
        if output_format == "file":
            return {"data": str(self._save(encoded, extension, options))}
        return {"data": f"data:image/{extension};base64,{base64.b64encode(encoded).decode('ascii')}"}

    def _save(self, encoded: bytes, extension: str, options: Mapping[str, Any]) -> Path:
        output_path = options.get("outputPath")
        if output_path:
            destination = Path(output_path).expanduser()
            if destination.suffix.lower() != f".{extension}":
                destination = destination.with_name(f"{destination.name}.{extension}")
        else:
            output_dir = Path(options.get("outputDir") or self.config.output_dir).expanduser()
            destination = output_dir / f"{uuid.uuid4()}.{extension}"

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(encoded)
        except OSError as exc:
            raise ImageOperationError(f"写入文件失败: {destination}") from exc

        self.logger.debug("已写入输出文件 %s", destination)
        return destination.resolve()


def encode_image(
    image: Image.Image,
    pil_format: str,
    *,
    quality: int,
    progressive: bool = False,
    options: Optional[Mapping[str, Any]] = None,
) -> bytes:
    """将图片编码为指定格式的字节串。"""

    options = options or {}
    save_params: dict[str, Any] = {}
    image_to_save = image

    if pil_format == "JPEG":
        save_params.update(quality=quality, optimize=True, progressive=progressive)
        if image.mode not in {"RGB", "L"}:
            image_to_save = _flatten_alpha(image, options.get("background") or "#FFFFFF")
    elif pil_format == "PNG":
        save_params.update(optimize=True, compress_level=9)
        if image.mode not in {"RGB", "RGBA", "L", "LA", "P"}:
            image_to_save = image.convert("RGBA")
    elif pil_format in {"WEBP", "AVIF"}:
        save_params.update(quality=quality)
    elif pil_format == "BMP":
        if image.mode not in {"RGB", "RGBA", "L", "P", "1"}:
            image_to_save = image.convert("RGB")
    elif pil_format == "TIFF":
        save_params.update(compression="tiff_deflate")

    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format=pil_format, **save_params)
    except (OSError, KeyError, ValueError) as exc:
        raise ImageOperationError(f"编码为 {pil_format} 失败: {exc}") from exc
    return buffer.getvalue()


def describe_dimensions(width: int, height: int) -> dict[str, Any]:
    """根据宽高给出比例、方向与清晰度等级。"""

    ratio = width / height if height else 0.0
    if abs(ratio - 1) < 0.1:
        description = "Square (1:1)"
    elif abs(ratio - 4 / 3) < 0.1:
        description = "Standard (4:3)"
    elif abs(ratio - 16 / 9) < 0.1:
        description = "Widescreen (16:9)"
    elif abs(ratio - 3 / 2) < 0.1:
        description = "Classic (3:2)"
    elif ratio > 2:
        description = "Ultra-wide"
    elif ratio < 0.5:
        description = "Ultra-tall"
    elif ratio > 1:
        description = "Landscape"
    else:
        description = "Portrait"

    if width == height:
        orientation = "square"
    elif width > height:
        orientation = "landscape"
    else:
        orientation = "portrait"

    pixels = width * height
    if pixels >= 1920 * 1080:
        quality = "high"
    elif pixels >= 640 * 480:
        quality = "medium"
    else:
        quality = "low"

    return {
        "aspectRatio": round(ratio, 2),
        "description": description,
        "orientation": orientation,
        "quality": quality,
    }


def _int_option(options: Mapping[str, Any], key: str, default: int) -> int:
    # 只有缺省或 None 才回落到默认值，显式的 0 保留
    value = options.get(key)
    return default if value is None else int(value)


def _flatten_alpha(image: Image.Image, background: str) -> Image.Image:
    """将带透明通道的图片合成到纯色背景上。"""

    rgba = image.convert("RGBA")
    canvas = Image.new("RGB", rgba.size, parse_background_color(background))
    canvas.paste(rgba, mask=rgba.split()[-1])
    return canvas


def _to_rgb_array(image: Image.Image) -> np.ndarray:
    sample = image.convert("RGB")
    sample.thumbnail(COLOR_SAMPLE_SIZE, _RESAMPLING.LANCZOS)
    return np.ascontiguousarray(np.asarray(sample, dtype=np.uint8))


def _dominant_colors(rgb: np.ndarray, count: int, *, include_hsl: bool = True) -> list[dict[str, Any]]:
    """使用 k-means 聚类得到主色调，按占比降序排列。"""

    pixels = rgb.reshape(-1, 3).astype(np.float32)
    unique = np.unique(pixels, axis=0)
    k = max(1, min(count, len(unique)))

    if k == len(unique):
        # 颜色数不超过 k 时直接统计，无需聚类
        centers = unique
        labels = np.argmin(((pixels[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2), axis=1)
    else:
        _, labels, centers = cv2.kmeans(pixels, k, None, KMEANS_CRITERIA, 3, cv2.KMEANS_PP_CENTERS)
        labels = labels.flatten()

    counts = np.bincount(labels, minlength=len(centers))
    total = int(counts.sum())
    ranked = sorted(zip(counts.tolist(), centers.tolist()), key=lambda pair: pair[0], reverse=True)

    colors = []
    for pixel_count, center in ranked:
        if pixel_count == 0:
            continue
        info = _color_info(center, include_hsl=include_hsl)
        info["percentage"] = round(pixel_count / total * 100, 2)
        colors.append(info)
    return colors


def _color_info(rgb: Any, *, include_hsl: bool = True) -> dict[str, Any]:
    r, g, b = (max(0, min(255, int(round(float(channel))))) for channel in rgb[:3])
    info: dict[str, Any] = {"hex": rgb_to_hex((r, g, b)), "rgb": {"r": r, "g": g, "b": b}}
    if include_hsl:
        hue, lightness, saturation = colorsys.rgb_to_hls(r / 255, g / 255, b / 255)
        info["hsl"] = {
            "h": round_half_up(hue * 360),
            "s": round_half_up(saturation * 100),
            "l": round_half_up(lightness * 100),
        }
    return info


def _temperature(average: np.ndarray) -> str:
    r, _, b = (float(channel) for channel in average[:3])
    if r - b > 10:
        return "warm"
    if b - r > 10:
        return "cool"
    return "neutral"
