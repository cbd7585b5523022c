"""处理流水线：扫描、并发执行转换、汇总报告。"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional

from webp_converter.core.config import RunConfig, resolve_worker_count, validate_config
from webp_converter.core.exceptions import MissingDependencyError, ProcessingAborted, UnreadableInputError
from webp_converter.core.models import (
    REASON_ENCODER_ERROR,
    BatchReport,
    CandidateFile,
    DryRunPreview,
    FileOutcome,
    PreviewEntry,
)
from webp_converter.core.output_manager import OutputManager
from webp_converter.core.progress import ProgressCounter, ProgressUpdate
from webp_converter.core.report import aggregate, write_csv_report
from webp_converter.core.run_log import RunLog
from webp_converter.core.scanner import collect_candidates
from webp_converter.processing.classifier import classify
from webp_converter.processing.engine import ImageEngine, create_engine
from webp_converter.processing.worker import WorkerContext, convert_file, record_failure

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
ConfirmCallback = Optional[Callable[[int], bool]]


def run_batch(
    root: Path,
    config: RunConfig,
    *,
    engine: Optional[ImageEngine] = None,
    confirm: ConfirmCallback = None,
    progress_callback: ProgressCallback = None,
) -> BatchReport:
    """批量转换入口：扫描 ``root`` 下的候选文件并并发转换。

    配置错误、依赖缺失或用户取消会在处理任何文件之前抛出异常；
    单个文件的失败只记录在报告中。
    """

    validate_config(config)

    LOGGER.info("开始扫描输入路径: %s", root)
    candidates = collect_candidates(root, recursive=config.recursive, suffix=config.source_suffix)
    total = len(candidates)
    LOGGER.info("发现 %d 个候选文件", total)

    if total == 0:
        _emit_progress(progress_callback, completed=0, total=0, message="没有需要转换的文件", status="finished")
        return BatchReport(total=0)

    workers = resolve_worker_count(config)

    if config.dry_run:
        # dry-run 的探测只用于预览，引擎不可用时仍然列出文件
        return BatchReport(total=total, preview=build_preview(candidates, config, engine))

    if engine is None:
        engine = create_engine(config)

    if config.delete_original and (confirm is None or not confirm(total)):
        raise ProcessingAborted("未确认删除源文件，已取消")

    counter = ProgressCounter(total)
    output_manager = OutputManager()
    with RunLog(config.log_dir) as run_log:
        run_log.banner(total, workers, engine.name)
        context = WorkerContext(
            config=config,
            engine=engine,
            counter=counter,
            output_manager=output_manager,
            run_log=run_log,
            progress_callback=progress_callback,
        )
        _emit_progress(progress_callback, 0, total, f"开始转换（并发 {workers}）")

        try:
            outcomes = _dispatch(candidates, context, workers)
        except KeyboardInterrupt as exc:
            context.cancel_event.set()
            killed = engine.terminate_all()
            removed = output_manager.cleanup_partials()
            run_log.write(f"!!! 用户中断：终止 {killed} 个子进程，清理 {removed} 个临时文件")
            LOGGER.warning("处理被中断，已完成 %d/%d", counter.value, total)
            raise ProcessingAborted("处理被用户中断", interrupted=True) from exc

        report = aggregate(outcomes, total)
        report.log_path = run_log.path
        run_log.write_summary(report)

    if config.csv_report is not None:
        _write_report(config.csv_report, report)

    _emit_progress(progress_callback, counter.value, total, "处理完成", status="finished")
    return report


def _dispatch(candidates: list[CandidateFile], context: WorkerContext, workers: int) -> list[FileOutcome]:
    """按并发上限分发任务，等待全部完成后返回结果。"""

    outcomes: list[FileOutcome] = []

    if workers <= 1:
        for candidate in candidates:
            outcomes.append(_run_guarded(candidate, context))
        return outcomes

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="convert")
    try:
        future_map: dict[Future, CandidateFile] = {
            executor.submit(convert_file, candidate, context): candidate for candidate in candidates
        }
        for future in as_completed(future_map):
            candidate = future_map[future]
            try:
                outcomes.append(future.result())
            except Exception as exc:  # noqa: BLE001
                outcomes.append(_unexpected_failure(candidate, exc, context))
    except BaseException:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return outcomes


def _run_guarded(candidate: CandidateFile, context: WorkerContext) -> FileOutcome:
    try:
        return convert_file(candidate, context)
    except Exception as exc:  # noqa: BLE001
        return _unexpected_failure(candidate, exc, context)


def _unexpected_failure(candidate: CandidateFile, exc: Exception, context: WorkerContext) -> FileOutcome:
    LOGGER.exception("任务执行异常：%s", exc)
    outcome = FileOutcome.failed(candidate.path, REASON_ENCODER_ERROR, f"{type(exc).__name__}: {exc}")
    return record_failure(context, outcome)


def build_preview(
    candidates: list[CandidateFile],
    config: RunConfig,
    engine: Optional[ImageEngine] = None,
) -> DryRunPreview:
    """生成 dry-run 预览：最多列出 ``dry_run_limit`` 个文件及其计划输出。"""

    preview = DryRunPreview(total=len(candidates))
    if engine is None:
        try:
            engine = create_engine(config)
        except MissingDependencyError as exc:
            LOGGER.warning("预览时无法创建转换引擎：%s", exc)

    for candidate in candidates[: config.dry_run_limit]:
        if engine is None:
            preview.entries.append(PreviewEntry(source=candidate.path, planned_output=None, note="未探测"))
            continue
        try:
            plan = classify(candidate, engine, config.quality)
        except UnreadableInputError as exc:
            preview.entries.append(PreviewEntry(source=candidate.path, planned_output=None, note=str(exc)))
            continue
        note = "已存在，将跳过" if plan.output_path.exists() else None
        preview.entries.append(PreviewEntry(source=candidate.path, planned_output=plan.output_path, note=note))
    return preview


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, status=status))


def _write_report(report_path: Path, report: BatchReport) -> None:
    try:
        write_csv_report(report.all_outcomes(), report_path)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
