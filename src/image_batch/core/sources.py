"""图片来源的轻量校验：只判断“看起来像”合法来源，不做任何 I/O。"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import urlsplit

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "bmp", "webp", "avif", "tiff")

_EXTENSION_RE = re.compile(r"\.(" + "|".join(IMAGE_EXTENSIONS) + r")\Z", re.IGNORECASE)

# 首尾的 C0 控制字符与空格会被忽略，中间的 tab 与换行会被删除
_C0_OR_SPACE = "".join(chr(code) for code in range(0x21))
_TAB_OR_NEWLINE_RE = re.compile(r"[\t\n\r]")
_FORBIDDEN_HOST_CHARS = frozenset(" #%/:<>?@[\\]^|\x7f") | frozenset(_C0_OR_SPACE)


@dataclass(slots=True)
class ValidationReport:
    """来源校验结果，两个列表均保持输入的相对顺序。"""

    valid: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def classify_sources(sources: Iterable[str]) -> ValidationReport:
    """将来源划分为合法与不合法两组。"""

    report = ValidationReport()
    for source in sources:
        if is_valid_source(source):
            report.valid.append(source)
        else:
            report.invalid.append(source)

    LOGGER.info("来源校验完成：合法 %d 个，不合法 %d 个", len(report.valid), len(report.invalid))
    return report


def is_valid_source(source: object) -> bool:
    """按 URL > data URI > 文件扩展名的优先级判断单个来源。"""

    if not isinstance(source, str):
        return False

    if source.startswith(("http://", "https://")):
        return _is_well_formed_url(source)

    if source.startswith("data:image/"):
        return True

    return "." in source and _EXTENSION_RE.search(source) is not None


def _is_well_formed_url(value: str) -> bool:
    """按浏览器 URL 解析的规则判断 http(s) 地址是否可解析。"""

    value = _TAB_OR_NEWLINE_RE.sub("", value.strip(_C0_OR_SPACE))
    scheme, _, rest = value.partition(":")
    # http(s) 的 authority 前可以有任意数量的斜杠，反斜杠视同斜杠
    rest = rest.replace("\\", "/").lstrip("/")
    try:
        parts = urlsplit(f"{scheme}://{rest}")
        # 访问 port 会校验端口格式与范围
        _ = parts.port
    except ValueError:
        return False

    host = parts.netloc.rpartition("@")[2]
    if host.startswith("["):
        # IPv6 字面量已由 urlsplit 校验括号
        return "]" in host
    hostname = host.partition(":")[0]
    return bool(hostname) and not any(char in _FORBIDDEN_HOST_CHARS for char in hostname)
