"""转换任务的配置与固定参数。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

WEBP_QUALITY = 90
OUTPUT_SUFFIX = ".webp"
SUPPORTED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp"})

# 预估输出大小时使用的压缩比，以及磁盘空间检查的安全系数。
COMPRESSION_RATIO = 0.7
SAFETY_MARGIN = 1.2


@dataclass(slots=True)
class JobConfig:
    """单次批量转换的配置集合。"""

    source_dir: Path
    short_edge_size: int = 0  # <= 0 表示不缩放
    recursive: bool = False
    check_space: bool = True
