"""项目内使用的自定义异常定义。"""


class ImageBatchError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageBatchError):
    """配置不合法时抛出。"""


class ValidationError(ImageBatchError):
    """请求结构对当前操作不合法（如 convert 缺少 targetFormat）。"""


class UnsupportedOperationError(ImageBatchError):
    """操作类型不在支持范围内。"""


class CollaboratorError(ImageBatchError):
    """操作提供者执行失败。"""


class SourceLoadError(CollaboratorError):
    """图片来源加载失败。"""


class ImageOperationError(CollaboratorError):
    """图像处理（解码、编码、取色等）失败。"""
