"""转换前的磁盘空间预估与检查。

检查只是建议性的：不会预留空间，之后的写入失败仍按单个文件处理。
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Sequence

from webp_batch.core.config import SAFETY_MARGIN
from webp_batch.core.models import ValidationResult
from webp_batch.processing.codec import PathLike, estimate_output_size

LOGGER = logging.getLogger(__name__)

_UNITS = ((1024**3, "GB"), (1024**2, "MB"), (1024, "KB"))


def format_bytes(num_bytes: int) -> str:
    """将字节数格式化为可读字符串，例如 1536 -> "1.50 KB"。"""

    if num_bytes < 0:
        return "-" + format_bytes(-num_bytes)

    for threshold, unit in _UNITS:
        if num_bytes >= threshold:
            return f"{num_bytes / threshold:.2f} {unit}"
    return f"{num_bytes} B"


def available_space(directory: PathLike) -> int:
    """返回目录所在卷的可用字节数。"""

    try:
        return shutil.disk_usage(directory).free
    except OSError as exc:
        LOGGER.warning("无法查询可用空间 %s: %s", directory, exc)
        return 0


def estimate_required_space(files: Sequence[PathLike], safety_margin: float = SAFETY_MARGIN) -> int:
    """累加每个文件的预估输出大小并乘以安全系数。"""

    estimated = sum(estimate_output_size(path) for path in files)
    return int(estimated * safety_margin)


def validate_disk_space(files: Sequence[PathLike], target_directory: PathLike) -> ValidationResult:
    """检查目标目录是否有足够空间容纳全部输出。"""

    LOGGER.info("检查 %d 个文件所需的磁盘空间", len(files))

    if not files:
        return ValidationResult(valid=True, message="没有需要转换的文件")

    required = estimate_required_space(files)
    available = available_space(Path(target_directory))

    LOGGER.info("预计需要空间: %d 字节 (%s)", required, format_bytes(required))
    LOGGER.info("可用磁盘空间: %d 字节 (%s)", available, format_bytes(available))

    if available < required:
        LOGGER.warning("磁盘空间不足，无法开始转换")
        message = (
            "磁盘空间不足！\n\n"
            f"需要: {format_bytes(required)}\n"
            f"可用: {format_bytes(available)}\n\n"
            "请先释放磁盘空间后再继续。"
        )
        return ValidationResult(valid=False, message=message)

    LOGGER.info("磁盘空间检查通过")
    return ValidationResult(valid=True, message="磁盘空间充足")
