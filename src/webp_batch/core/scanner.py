"""文件扫描与筛选逻辑。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from webp_batch.core.exceptions import InvalidConfigurationError
from webp_batch.processing.codec import is_supported_format


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历目录下的所有普通文件。"""

    iterator = path.rglob("*") if recursive else path.iterdir()
    for candidate in iterator:
        if candidate.is_file():
            yield candidate


def collect_image_files(directory: Path, *, recursive: bool = False) -> list[Path]:
    """扫描目录，返回扩展名受支持的图片文件（按路径排序）。"""

    if not directory.is_dir():
        raise InvalidConfigurationError(f"不是有效的目录: {directory}")

    resolved = directory.resolve()
    collected = [
        candidate for candidate in _iter_candidate_files(resolved, recursive) if is_supported_format(candidate)
    ]
    collected.sort(key=lambda x: str(x).lower())
    return collected
