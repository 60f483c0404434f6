"""日志工具。"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"

# 下载与解码库在 INFO 级别会逐条输出请求与插件信息，淹没批处理进度
THIRD_PARTY_LOGGERS = ("httpx", "httpcore", "PIL")


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置。

    第三方库只在 DEBUG 模式下跟随项目级别，其余情况下只输出 WARNING 及以上。
    """

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("image_batch").setLevel(level)

    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
