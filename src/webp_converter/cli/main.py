"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from webp_converter.core.config import RunConfig
from webp_converter.core.exceptions import (
    InvalidConfigurationError,
    MissingDependencyError,
    ProcessingAborted,
)
from webp_converter.core.models import BatchReport, DryRunPreview
from webp_converter.core.paths import resolve_path
from webp_converter.core.progress import ProgressUpdate
from webp_converter.processing.pipeline import run_batch
from webp_converter.utils.logging import setup_logging

app = typer.Typer(help="批量将 WebP 转换为 JPG / PNG / GIF。")

EXIT_INTERRUPTED = 130


@app.callback()
def main() -> None:
    """WebP 批量转换工具。"""


def _build_progress_callback(progress: Progress) -> Callable[[ProgressUpdate], None]:
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            # 延迟启动，避免与删除确认提示冲突
            progress.start()
            task_id = progress.add_task("转换图片", total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message and update.completed > 0:
            progress.log(update.message)

    return callback


def _build_simple_callback() -> Callable[[ProgressUpdate], None]:
    def callback(update: ProgressUpdate) -> None:
        if update.total == 0 or update.status != "running" or update.completed == 0:
            return
        typer.echo(f"[{update.completed}/{update.total}] {update.message or ''}")

    return callback


def _confirm_delete(total: int) -> bool:
    return typer.confirm(f"转换成功后将删除 {total} 个源文件，确认继续？", default=False)


def _print_preview(preview: DryRunPreview) -> None:
    typer.echo(f"[dry-run] 共发现 {preview.total} 个文件，未执行任何转换。")
    for entry in preview.entries:
        target = entry.planned_output.name if entry.planned_output else "?"
        line = f"  {entry.source} -> {target}"
        if entry.note:
            line += f"  ({entry.note})"
        typer.echo(line)
    if preview.truncated:
        typer.echo(f"  ... 其余 {preview.total - len(preview.entries)} 个文件未列出")


def _print_summary(report: BatchReport) -> None:
    typer.echo(
        f"处理完成：成功 {report.success_count} 个，跳过 {report.skip_count} 个，"
        f"失败 {report.error_count} 个，共 {report.total} 个。"
    )
    if report.log_path:
        typer.echo(f"详细日志：{report.log_path}")


@app.command("run")
def run_cli(  # noqa: PLR0913
    directory: Path = typer.Argument(..., help="要扫描的目录"),
    quality: int = typer.Option(90, "--quality", "-q", help="JPG 质量 1~100"),
    max_workers: Optional[int] = typer.Option(None, "--workers", "-w", help="并发数，默认使用逻辑 CPU 数"),
    delete_original: bool = typer.Option(False, "--delete-original", help="转换成功后删除源文件"),
    assume_yes: bool = typer.Option(False, "--yes", "-y", help="跳过删除确认"),
    dry_run: bool = typer.Option(False, "--dry-run", help="只列出将要转换的文件"),
    list_limit: int = typer.Option(20, "--list-limit", help="dry-run 最多列出的文件数"),
    recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描子目录"),
    progress_mode: str = typer.Option("bar", "--progress", help="进度显示模式 bar/simple/none"),
    engine: str = typer.Option("magick", "--engine", help="转换引擎 magick/pillow"),
    magick_path: Optional[Path] = typer.Option(None, "--magick", help="ImageMagick 可执行文件路径"),
    timeout: float = typer.Option(300.0, "--timeout", help="单次外部工具调用超时（秒），0 表示不限制"),
    log_dir: Path = typer.Option(Path("."), "--log-dir", help="运行日志所在目录"),
    csv_report: Optional[Path] = typer.Option(None, "--csv-report", help="额外输出 CSV 报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """扫描目录并批量转换 WebP 文件。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    root = resolve_path(directory.expanduser())
    if not root.exists():
        typer.secho(f"目录不存在：{root}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    config = RunConfig(
        quality=quality,
        max_workers=max_workers,
        delete_original=delete_original,
        dry_run=dry_run,
        dry_run_limit=list_limit,
        recursive=recursive,
        progress_mode=progress_mode,
        engine=engine,
        magick_path=magick_path,
        timeout=timeout or None,
        log_dir=resolve_path(log_dir.expanduser()),
        csv_report=resolve_path(csv_report.expanduser()) if csv_report else None,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )
    callback = None
    if progress_mode == "bar":
        callback = _build_progress_callback(progress)
    elif progress_mode == "simple":
        callback = _build_simple_callback()

    confirm = (lambda _total: True) if assume_yes else _confirm_delete

    try:
        report = run_batch(root, config, confirm=confirm, progress_callback=callback)
    except (InvalidConfigurationError, MissingDependencyError) as exc:
        typer.secho(f"错误：{exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    except ProcessingAborted as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED if exc.interrupted else 1) from exc
    finally:
        progress.stop()

    if report.preview is not None:
        _print_preview(report.preview)
        raise typer.Exit(code=0)

    if report.total == 0:
        typer.echo(f"未找到需要转换的 {config.source_suffix} 文件。")
        raise typer.Exit(code=0)

    _print_summary(report)
    raise typer.Exit(code=report.exit_code)


if __name__ == "__main__":
    app()
