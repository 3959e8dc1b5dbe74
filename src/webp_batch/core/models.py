"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class BatchState(str, Enum):
    """批处理的生命周期状态。"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class FileOutcome:
    """单个文件的转换结果。"""

    source_path: Path
    status: str
    output_path: Optional[Path] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "converted"


@dataclass(slots=True, frozen=True)
class ConversionResult:
    """一次批处理的最终汇总，批处理结束（含取消）时构造一次。"""

    success_count: int
    fail_count: int
    errors: tuple[str, ...] = ()
    space_saved: int = 0

    @property
    def total_count(self) -> int:
        return self.success_count + self.fail_count


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """磁盘空间预检的结论。"""

    valid: bool
    message: str
