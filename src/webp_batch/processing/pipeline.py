"""批处理流水线：逐个转换文件，汇总计数、错误与节省的空间。"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from webp_batch.core.config import JobConfig
from webp_batch.core.exceptions import InsufficientSpaceError, OrchestrationError, WebpBatchError
from webp_batch.core.models import BatchState, ConversionResult, FileOutcome
from webp_batch.core.progress import PROGRESS, STATUS, ProgressUpdate
from webp_batch.core.scanner import collect_image_files
from webp_batch.processing.codec import PathLike, convert_file
from webp_batch.processing.space import validate_disk_space

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


@dataclass(slots=True)
class _Accumulator:
    """单次批处理独占的计数器。"""

    success_count: int = 0
    fail_count: int = 0
    errors: list[str] = field(default_factory=list)
    space_saved: int = 0

    def record(self, outcome: FileOutcome, original_size: Optional[int]) -> None:
        if outcome.succeeded:
            self.success_count += 1
            # 只有在输出文件确实存在时才计入节省的空间，差值可以为负。
            if outcome.output_path is not None and original_size is not None and outcome.output_path.exists():
                self.space_saved += original_size - outcome.output_path.stat().st_size
            return

        self.fail_count += 1
        self.errors.append(f"{outcome.source_path.name}: {outcome.message or outcome.status}")

    def freeze(self) -> ConversionResult:
        return ConversionResult(
            success_count=self.success_count,
            fail_count=self.fail_count,
            errors=tuple(self.errors),
            space_saved=self.space_saved,
        )


class ConversionBatch:
    """对固定文件列表执行一次顺序转换。

    状态流转：IDLE -> RUNNING -> COMPLETED / CANCELLED / FAILED。
    取消是协作式的，只在每个文件开始前检查，正在处理的文件总会完成。
    """

    def __init__(
        self,
        files: Iterable[PathLike],
        short_edge_size: int = 0,
        *,
        progress_callback: ProgressCallback = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._files = files
        self.short_edge_size = short_edge_size
        self._progress_callback = progress_callback
        self._cancel_event = cancel_event or threading.Event()
        self._state = BatchState.IDLE
        self._state_lock = threading.Lock()
        self.result: Optional[ConversionResult] = None

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """请求取消，在下一个文件开始前生效。"""

        self._cancel_event.set()

    def start(self, executor: Optional[ThreadPoolExecutor] = None) -> Future[ConversionResult]:
        """在独立的工作线程中运行批处理，返回 Future。"""

        if executor is not None:
            return executor.submit(self.run)

        own_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webp-batch")
        try:
            return own_executor.submit(self.run)
        finally:
            own_executor.shutdown(wait=False)

    def run(self) -> ConversionResult:
        """执行批处理并返回汇总结果。

        单个文件的失败只会被记录；文件列表无效等批处理层面的错误
        会使状态变为 FAILED 并向上抛出。
        """

        with self._state_lock:
            if self._state is not BatchState.IDLE:
                raise OrchestrationError(f"批处理已处于 {self._state.value} 状态，不能重复执行")
            self._state = BatchState.RUNNING

        try:
            files = _prepare_file_list(self._files)
            return self._run_files(files)
        except WebpBatchError:
            self._state = BatchState.FAILED
            LOGGER.exception("批处理执行失败")
            raise
        except Exception as exc:
            self._state = BatchState.FAILED
            LOGGER.exception("批处理执行失败")
            raise OrchestrationError(f"批处理执行失败: {exc}") from exc

    def _run_files(self, files: list[Path]) -> ConversionResult:
        total = len(files)
        LOGGER.info("开始批量转换 %d 个文件", total)
        self._emit(0, total, "开始转换...")

        accumulator = _Accumulator()
        processed = 0
        cancelled = False

        for index, path in enumerate(files):
            if self._cancel_event.is_set():
                cancelled = True
                LOGGER.info("转换任务已取消")
                break

            self._emit(index, total, f"正在转换: {path.name}", kind=STATUS)
            outcome, original_size = self._process_file(path)
            accumulator.record(outcome, original_size)
            if outcome.succeeded:
                LOGGER.debug("转换成功: %s", path.name)
            else:
                LOGGER.error("转换失败: %s (%s)", path.name, outcome.message)

            processed = index + 1
            self._emit(processed, total)

        self.result = accumulator.freeze()

        if cancelled:
            self._state = BatchState.CANCELLED
            LOGGER.warning("批处理已取消：已处理 %d/%d 个文件", processed, total)
            self._emit(processed, total, "转换已取消", status=self._state.value, kind=STATUS)
        else:
            self._state = BatchState.COMPLETED
            LOGGER.info(
                "批量转换完成：成功 %d 个，失败 %d 个",
                self.result.success_count,
                self.result.fail_count,
            )
            self._emit(processed, total, "转换完成", status=self._state.value, kind=STATUS)

        return self.result

    def _process_file(self, path: Path) -> tuple[FileOutcome, Optional[int]]:
        """单文件错误边界：任何异常都降级为失败记录，不中断批处理。"""

        try:
            original_size = path.stat().st_size
            return convert_file(path, self.short_edge_size), original_size
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("转换 %s 时发生异常", path.name)
            outcome = FileOutcome(
                source_path=path,
                status="error-unexpected",
                message=str(exc) or type(exc).__name__,
            )
            return outcome, None

    def _emit(
        self,
        completed: int,
        total: int,
        message: Optional[str] = None,
        status: str = "running",
        kind: str = PROGRESS,
    ) -> None:
        _emit_progress(self._progress_callback, completed, total, message, status, kind)


def prepare_job(config: JobConfig) -> list[Path]:
    """扫描目录并执行空间预检，返回待转换的文件列表。

    空间不足时抛出 InsufficientSpaceError，此时不会触碰任何文件。
    """

    files = collect_image_files(config.source_dir, recursive=config.recursive)
    LOGGER.info("在 %s 中找到 %d 个图片文件", config.source_dir, len(files))

    if config.check_space and files:
        validation = validate_disk_space(files, config.source_dir)
        if not validation.valid:
            raise InsufficientSpaceError(validation.message)

    return files


def run_batch(
    files: Iterable[PathLike],
    short_edge_size: int = 0,
    *,
    progress_callback: ProgressCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> ConversionResult:
    """在当前线程中同步执行一次批处理。"""

    batch = ConversionBatch(
        files,
        short_edge_size,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )
    return batch.run()


def _prepare_file_list(files: Iterable[PathLike]) -> list[Path]:
    if files is None or isinstance(files, (str, bytes)):
        raise OrchestrationError(f"文件列表必须是路径序列，实际为: {type(files).__name__}")
    try:
        return [Path(item) for item in files]
    except (TypeError, OSError) as exc:
        raise OrchestrationError(f"无法读取文件列表: {exc}") from exc


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    status: str = "running",
    kind: str = PROGRESS,
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, status=status, kind=kind))
