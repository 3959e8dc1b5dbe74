"""批处理编排测试：计数、错误隔离、取消与进度顺序。"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from PIL import Image, features

from webp_batch.core.config import JobConfig
from webp_batch.core.exceptions import InsufficientSpaceError, OrchestrationError
from webp_batch.core.models import BatchState, FileOutcome
from webp_batch.core.progress import STATUS, ProgressUpdate
from webp_batch.processing import pipeline, space
from webp_batch.processing.codec import derive_output_path
from webp_batch.processing.pipeline import ConversionBatch, prepare_job, run_batch

requires_webp = pytest.mark.skipif(not features.check("webp"), reason="Pillow 未启用 WebP 支持")


def make_images(directory: Path, count: int, size: tuple[int, int] = (64, 48)) -> list[Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for idx in range(count):
        path = directory / f"img_{idx:02d}.png"
        Image.new("RGB", size, (idx * 20 % 256, 80, 160)).save(path)
        paths.append(path)
    return paths


def make_blobs(directory: Path, count: int, size: int = 100) -> list[Path]:
    paths = []
    for idx in range(count):
        path = directory / f"blob_{idx:02d}.jpg"
        path.write_bytes(b"\0" * size)
        paths.append(path)
    return paths


def fake_converter(output_size: int | None):
    """返回一个假的 convert_file：写入固定大小的输出（None 表示不写）。"""

    def _convert(path: Path, short_edge_size: int) -> FileOutcome:
        output = derive_output_path(path)
        if output_size is not None:
            output.write_bytes(b"x" * output_size)
        return FileOutcome(source_path=path, status="converted", output_path=output)

    return _convert


@requires_webp
def test_decode_failure_is_isolated(tmp_path: Path) -> None:
    files = make_images(tmp_path, 4)
    broken = tmp_path / "broken.png"
    broken.write_text("not an image")
    files.insert(2, broken)

    batch = ConversionBatch(files, 32)
    result = batch.run()

    assert batch.state is BatchState.COMPLETED
    assert result.success_count == 4
    assert result.fail_count == 1
    assert result.total_count == 5
    assert len(result.errors) == 1
    assert result.errors[0].startswith("broken.png: ")
    for path in files:
        if path != broken:
            with Image.open(derive_output_path(path)) as converted:
                assert converted.size == (43, 32)


def test_cancellation_after_third_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(10))
    files = make_blobs(tmp_path, 10)
    updates: list[ProgressUpdate] = []

    def on_progress(update: ProgressUpdate) -> None:
        updates.append(update)
        if update.is_progress and update.completed == 3:
            batch.cancel()

    batch = ConversionBatch(files, 0, progress_callback=on_progress)
    result = batch.run()

    assert batch.state is BatchState.CANCELLED
    assert result.total_count <= 3
    assert result.success_count == 3
    assert not derive_output_path(files[3]).exists()
    assert updates[-1].status == "cancelled"


def test_cancel_before_start_processes_nothing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(10))
    event = threading.Event()
    event.set()

    batch = ConversionBatch(make_blobs(tmp_path, 3), cancel_event=event)
    result = batch.run()

    assert batch.state is BatchState.CANCELLED
    assert result.total_count == 0
    assert result.errors == ()


def test_progress_is_monotonic_and_status_precedes_work(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[tuple[str, object]] = []

    def tracking_convert(path: Path, short_edge_size: int) -> FileOutcome:
        events.append(("work", path.name))
        return fake_converter(10)(path, short_edge_size)

    monkeypatch.setattr(pipeline, "convert_file", tracking_convert)
    files = make_blobs(tmp_path, 4)

    def on_progress(update: ProgressUpdate) -> None:
        events.append(("progress", update))

    run_batch(files, progress_callback=on_progress)

    updates = [payload for kind, payload in events if kind == "progress"]
    assert (updates[0].completed, updates[0].total) == (0, 4)

    counts = [u.completed for u in updates if u.is_progress]
    assert counts == [0, 1, 2, 3, 4]
    assert [u.completed for u in updates] == sorted(u.completed for u in updates)

    for idx, path in enumerate(files):
        work_pos = events.index(("work", path.name))
        status_event = events[work_pos - 1]
        assert status_event[0] == "progress"
        assert status_event[1].kind == STATUS
        assert path.name in status_event[1].message

    assert updates[-1].status == "completed"


def test_unexpected_fault_does_not_abort_batch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    files = make_blobs(tmp_path, 3)
    working = fake_converter(10)

    def flaky(path: Path, short_edge_size: int) -> FileOutcome:
        if path == files[1]:
            raise MemoryError("image too large")
        return working(path, short_edge_size)

    monkeypatch.setattr(pipeline, "convert_file", flaky)

    batch = ConversionBatch(files)
    result = batch.run()

    assert batch.state is BatchState.COMPLETED
    assert result.success_count == 2
    assert result.fail_count == 1
    assert result.errors == ("blob_01.jpg: image too large",)


def test_missing_input_counts_as_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(10))
    files = make_blobs(tmp_path, 2)
    files.append(tmp_path / "vanished.jpg")

    result = run_batch(files)

    assert result.success_count == 2
    assert result.fail_count == 1
    assert result.errors[0].startswith("vanished.jpg: ")


def test_space_saved_sums_deltas(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(30))

    result = run_batch(make_blobs(tmp_path, 3, size=100))

    assert result.space_saved == 3 * 70


def test_space_saved_can_be_negative(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(150))

    result = run_batch(make_blobs(tmp_path, 2, size=100))

    assert result.space_saved == -100


def test_missing_output_is_not_credited(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(None))

    result = run_batch(make_blobs(tmp_path, 2))

    assert result.success_count == 2
    assert result.space_saved == 0


def test_reported_failure_is_recorded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing(path: Path, short_edge_size: int) -> FileOutcome:
        return FileOutcome(source_path=path, status="error-encode", message="写入文件失败: disk full")

    monkeypatch.setattr(pipeline, "convert_file", failing)

    result = run_batch(make_blobs(tmp_path, 1))

    assert result.fail_count == 1
    assert result.errors == ("blob_00.jpg: 写入文件失败: disk full",)


def test_empty_batch_completes() -> None:
    batch = ConversionBatch([])

    result = batch.run()

    assert batch.state is BatchState.COMPLETED
    assert result.total_count == 0
    assert result.space_saved == 0


@pytest.mark.parametrize("files", [None, "/not/a/list", [object()]])
def test_invalid_file_list_fails_batch(files: object) -> None:
    batch = ConversionBatch(files)  # type: ignore[arg-type]

    with pytest.raises(OrchestrationError):
        batch.run()

    assert batch.state is BatchState.FAILED
    assert batch.result is None


def test_batch_runs_only_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(10))
    batch = ConversionBatch(make_blobs(tmp_path, 1))
    batch.run()

    with pytest.raises(OrchestrationError):
        batch.run()
    assert batch.state is BatchState.COMPLETED


def test_start_runs_on_worker_thread(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    threads: list[str] = []
    working = fake_converter(10)

    def recording(path: Path, short_edge_size: int) -> FileOutcome:
        threads.append(threading.current_thread().name)
        return working(path, short_edge_size)

    monkeypatch.setattr(pipeline, "convert_file", recording)
    batch = ConversionBatch(make_blobs(tmp_path, 2))

    result = batch.start().result(timeout=10)

    assert result.success_count == 2
    assert batch.state is BatchState.COMPLETED
    assert threading.current_thread().name not in threads


def test_prepare_job_blocks_on_insufficient_space(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    make_images(tmp_path, 2)
    monkeypatch.setattr(space, "available_space", lambda directory: 0)

    with pytest.raises(InsufficientSpaceError):
        prepare_job(JobConfig(source_dir=tmp_path))

    files = prepare_job(JobConfig(source_dir=tmp_path, check_space=False))
    assert [p.name for p in files] == ["img_00.png", "img_01.png"]


def test_failing_progress_sink_fails_batch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pipeline, "convert_file", fake_converter(10))

    def broken_sink(update: ProgressUpdate) -> None:
        if update.completed == 1:
            raise ValueError("display closed")

    batch = ConversionBatch(make_blobs(tmp_path, 2), progress_callback=broken_sink)

    with pytest.raises(OrchestrationError) as excinfo:
        batch.run()

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert batch.state is BatchState.FAILED
