"""项目内使用的自定义异常定义。"""


class WebpBatchError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(WebpBatchError):
    """配置不合法时抛出。"""


class DecodeError(WebpBatchError):
    """图片无法读取、已损坏或格式无法识别。"""


class EncodeError(WebpBatchError):
    """WebP 编码器不可用或写入失败。"""


class OrchestrationError(WebpBatchError):
    """批处理本身无法进行（与单个文件的失败不同）。"""


class InsufficientSpaceError(WebpBatchError):
    """预检发现目标目录剩余空间不足。"""
