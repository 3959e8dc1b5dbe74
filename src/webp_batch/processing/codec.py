"""图片解码、按短边缩放与 WebP 编码。

本模块只处理单个文件，不涉及批处理与进度。
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError, features

from webp_batch.core.config import (
    COMPRESSION_RATIO,
    OUTPUT_SUFFIX,
    SUPPORTED_EXTENSIONS,
    WEBP_QUALITY,
)
from webp_batch.core.exceptions import DecodeError, EncodeError
from webp_batch.core.models import FileOutcome

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

RESAMPLE_FILTER = Image.Resampling.BICUBIC


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_supported_format(path: PathLike) -> bool:
    """仅根据扩展名（忽略大小写）判断是否为候选图片。"""

    name = Path(path).name.lower()
    return any(name.endswith(extension) for extension in SUPPORTED_EXTENSIONS)


def estimate_output_size(path: PathLike) -> int:
    """粗略估计转换后的文件大小，不解码图片。"""

    try:
        original_size = os.path.getsize(path)
    except OSError as exc:
        LOGGER.warning("无法读取文件大小 %s: %s", path, exc)
        original_size = 0
    return _round_half_up(original_size * COMPRESSION_RATIO)


def derive_output_path(path: PathLike) -> Path:
    """输出与原图同目录、同名，扩展名替换为 .webp。"""

    absolute = Path(os.path.abspath(path))
    name = absolute.name
    dot = name.rfind(".")
    stem = name[:dot] if dot >= 0 else name
    return absolute.with_name(stem + OUTPUT_SUFFIX)


def decode_image(path: PathLike) -> Image.Image:
    """按文件内容识别格式并解码为内存中的图像。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    LOGGER.debug("加载图片: %s", path)
    try:
        with Image.open(path) as img:
            img.load()
            image = _normalize_mode(img)
            if image is img:
                image = img.copy()
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise DecodeError(f"无法加载图像: {exc}") from exc

    LOGGER.debug("图片加载完成: %s (%dx%d)", path, image.width, image.height)
    return image


def _normalize_mode(img: Image.Image) -> Image.Image:
    """WebP 只接受 RGB / RGBA，保留透明通道，其余模式统一转为 RGB。"""

    if img.mode in {"RGB", "RGBA"}:
        return img
    if img.mode in {"LA", "PA"} or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def compute_target_size(size: tuple[int, int], short_edge_size: int) -> tuple[int, int]:
    """根据短边目标值计算新的宽高，长边按同比例缩放并四舍五入。"""

    width, height = size
    if short_edge_size <= 0:
        return width, height

    if width < height:
        return short_edge_size, _round_half_up(height * short_edge_size / width)
    return _round_half_up(width * short_edge_size / height), short_edge_size


def resize_short_edge(image: Image.Image, short_edge_size: int) -> Image.Image:
    """按短边缩放，``short_edge_size <= 0`` 时原样返回输入对象。"""

    if short_edge_size <= 0:
        return image

    target = compute_target_size(image.size, short_edge_size)
    LOGGER.info("缩放图片 %dx%d -> %dx%d", image.width, image.height, *target)
    return image.resize(target, RESAMPLE_FILTER)


def webp_available() -> bool:
    return bool(features.check("webp"))


def save_webp(image: Image.Image, output_path: PathLike, quality: int = WEBP_QUALITY) -> None:
    """以有损 WebP 写入文件，失败时抛出 EncodeError。"""

    if not webp_available():
        raise EncodeError("当前 Pillow 未启用 WebP 编码器")

    destination = Path(output_path)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        image.save(destination, format="WEBP", quality=quality)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"写入文件失败: {exc}") from exc

    LOGGER.info("已保存 WebP: %s (%d 字节)", destination.name, destination.stat().st_size)


def encode_webp(image: Image.Image, output_path: PathLike, quality: int = WEBP_QUALITY) -> bool:
    """写入 WebP，成功返回 True；编码器缺失或写入失败返回 False。

    失败时不会清理可能残留的半成品文件。
    """

    try:
        save_webp(image, output_path, quality)
    except EncodeError as exc:
        LOGGER.error("保存 WebP 失败 %s: %s", output_path, exc)
        return False
    return True


def convert_file(path: PathLike, short_edge_size: int) -> FileOutcome:
    """解码、缩放、编码单个文件，以 FileOutcome 描述结果。

    DecodeError/EncodeError 会转成失败结果；其他异常原样抛出，
    由批处理的单文件边界捕获。
    """

    source = Path(path)
    output_path = derive_output_path(source)
    LOGGER.info("开始转换: %s", source.name)

    try:
        image = decode_image(source)
    except DecodeError as exc:
        return FileOutcome(source_path=source, status="error-decode", message=str(exc))

    resized: Optional[Image.Image] = None
    try:
        resized = resize_short_edge(image, short_edge_size)
        save_webp(resized, output_path)
    except EncodeError as exc:
        LOGGER.error("转换失败: %s", source.name)
        return FileOutcome(source_path=source, status="error-encode", message=str(exc))
    finally:
        _close_if_needed(image, resized if resized is not image else None)

    LOGGER.info("转换完成: %s -> %s", source.name, output_path.name)
    return FileOutcome(source_path=source, status="converted", output_path=output_path)


def convert_one(path: PathLike, short_edge_size: int) -> bool:
    """转换单个文件，仅返回是否成功。"""

    return convert_file(path, short_edge_size).succeeded


def _close_if_needed(*images: Optional[Image.Image]) -> None:
    for img in images:
        if img is not None:
            img.close()
