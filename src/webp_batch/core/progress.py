"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# kind="progress" 的事件中 completed 严格递增；kind="status" 只携带文字说明。
PROGRESS = "progress"
STATUS = "status"


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    message: Optional[str] = None
    status: str = "running"
    kind: str = PROGRESS

    @property
    def is_progress(self) -> bool:
        return self.kind == PROGRESS
