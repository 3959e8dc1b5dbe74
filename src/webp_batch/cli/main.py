"""命令行入口。"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from webp_batch.core.config import JobConfig
from webp_batch.core.exceptions import (
    InsufficientSpaceError,
    InvalidConfigurationError,
    OrchestrationError,
)
from webp_batch.core.models import BatchState, ConversionResult
from webp_batch.core.progress import ProgressUpdate
from webp_batch.core.scanner import collect_image_files
from webp_batch.processing.pipeline import ConversionBatch, prepare_job
from webp_batch.processing.space import format_bytes, validate_disk_space
from webp_batch.utils.logging import setup_logging

app = typer.Typer(help="批量将图片转换为 WebP，可按短边缩放。")
console = Console()


def _validate_size(value: int) -> int:
    if value < 0:
        raise typer.BadParameter("尺寸必须为正整数，0 表示不缩放")
    return value


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("转换图片", total=update.total)
        if update.is_progress:
            progress.update(task_id, completed=update.completed)
        if update.message:
            progress.update(task_id, description=update.message)

    return callback


def _render_summary(result: ConversionResult, state: BatchState, log_file: Optional[Path]) -> None:
    title = "转换已取消" if state is BatchState.CANCELLED else "批量转换完成"
    table = Table(title=title, show_header=False)
    table.add_column("项目", style="bold")
    table.add_column("数值", justify="right")
    table.add_row("文件总数", str(result.total_count))
    table.add_row("[green]转换成功[/green]", str(result.success_count))
    table.add_row("[red]转换失败[/red]", str(result.fail_count))
    if result.space_saved != 0:
        table.add_row("[blue]节省空间[/blue]", format_bytes(result.space_saved))
    console.print(table)

    if result.errors:
        console.print("[bold]错误列表:[/bold]")
        for error in result.errors:
            console.print(f"  {error}", markup=False)

    if log_file is not None:
        console.print(f"详细日志: {log_file.resolve()}", style="dim")


def _wait_for_result(future: Future[ConversionResult], batch: ConversionBatch, progress: Progress) -> ConversionResult:
    """等待批处理结束；第一次 Ctrl+C 请求取消，第二次放弃等待。"""

    try:
        return future.result()
    except KeyboardInterrupt:
        progress.console.print("收到中断，当前文件完成后停止……")
        batch.cancel()

    try:
        return future.result()
    except KeyboardInterrupt as exc:
        progress.console.print("再次中断，放弃等待。")
        raise typer.Exit(code=130) from exc


@app.command("convert")
def convert_cli(
    directory: Path = typer.Argument(..., help="包含图片的目录"),
    size: int = typer.Option(0, "--size", "-s", callback=_validate_size, help="短边目标像素，0 表示不缩放"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描子目录"),
    check_space: bool = typer.Option(True, "--check-space/--skip-space-check", help="转换前检查磁盘空间"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="写入详细日志的文件"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """将目录中的 jpg/jpeg/png/bmp 图片转换为同名 WebP 文件。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    config = JobConfig(
        source_dir=directory.expanduser().resolve(),
        short_edge_size=size,
        recursive=recursive,
        check_space=check_space,
    )

    try:
        files = prepare_job(config)
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="DIRECTORY") from exc
    except InsufficientSpaceError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if not files:
        typer.echo("没有找到可转换的图片。")
        return

    typer.echo(f"找到 {len(files)} 张图片。")

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )
    batch = ConversionBatch(files, config.short_edge_size, progress_callback=_build_progress_callback(progress))

    with progress:
        future = batch.start()
        try:
            result = _wait_for_result(future, batch, progress)
        except OrchestrationError as exc:
            typer.echo(f"转换失败: {exc}", err=True)
            raise typer.Exit(code=1) from exc

    _render_summary(result, batch.state, log_file)


@app.command("check")
def check_cli(
    directory: Path = typer.Argument(..., help="包含图片的目录"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描子目录"),
) -> None:
    """只执行磁盘空间预检，不转换任何文件。"""

    setup_logging(logging.WARNING)

    source_dir = directory.expanduser().resolve()
    try:
        files = collect_image_files(source_dir, recursive=recursive)
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="DIRECTORY") from exc

    validation = validate_disk_space(files, source_dir)
    typer.echo(f"找到 {len(files)} 张图片。")
    typer.echo(validation.message)
    if not validation.valid:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
