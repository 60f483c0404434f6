"""颜色工具函数。"""

from __future__ import annotations

from typing import Sequence, Tuple

from PIL import ImageColor

from image_batch.core.exceptions import InvalidConfigurationError


def parse_background_color(value: str) -> Tuple[int, int, int]:
    """解析透明通道合成用的背景色。

    支持 Pillow 能识别的写法：``#fff``、``#ffffff``、``#ffffff80``、
    ``rgb(...)``、``hsl(...)`` 以及 ``white`` 等颜色名。透明度分量被忽略。
    """

    text = str(value or "").strip()
    if not text:
        raise InvalidConfigurationError("颜色值不能为空")
    # 与前端一致，允许省略 "#"
    if len(text) in {3, 4, 6, 8} and all(ch in "0123456789abcdefABCDEF" for ch in text):
        text = f"#{text}"

    try:
        channels = ImageColor.getrgb(text)
    except ValueError as exc:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}") from exc
    r, g, b = channels[:3]
    return r, g, b


def rgb_to_hex(rgb: Sequence[float]) -> str:
    """将 RGB 值（允许浮点）转换为 ``#rrggbb``。"""

    r, g, b = (max(0, min(255, int(round(float(channel))))) for channel in rgb[:3])
    return f"#{r:02x}{g:02x}{b:02x}"
