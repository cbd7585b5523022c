"""并发处理的工作单元：探测 → 决策 → 编码 → 校验 → 记录。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from webp_converter.core.config import RunConfig
from webp_converter.core.exceptions import EncoderError, InvalidOutputError, UnreadableInputError
from webp_converter.core.models import (
    HINT_CORRUPT_INPUT,
    REASON_ENCODER_ERROR,
    REASON_INVALID_OUTPUT,
    REASON_UNREADABLE_INPUT,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    CandidateFile,
    ConversionPlan,
    FileOutcome,
)
from webp_converter.core.output_manager import OutputManager
from webp_converter.core.paths import resolve_path
from webp_converter.core.progress import ProgressCounter, ProgressUpdate
from webp_converter.core.run_log import (
    MARK_CONVERTING,
    MARK_DELETED,
    MARK_ERROR,
    MARK_SKIPPED,
    MARK_SUCCESS,
    MARK_WARNING,
    RunLog,
)
from webp_converter.processing.classifier import TARGET_GIF, classify
from webp_converter.processing.engine import HINT_MESSAGES, ImageEngine, diagnose_failure
from webp_converter.utils.sizes import format_delta, format_size

LOGGER = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]

_STATUS_MARKS = {STATUS_SUCCESS: MARK_SUCCESS, STATUS_SKIPPED: MARK_SKIPPED, STATUS_FAILED: MARK_ERROR}


@dataclass(slots=True)
class WorkerContext:
    """分发给每个任务的共享上下文，配置按值传入。"""

    config: RunConfig
    engine: ImageEngine
    counter: ProgressCounter
    output_manager: OutputManager
    run_log: RunLog
    progress_callback: ProgressCallback = None
    # 中断时由调度器置位，尚未编码或提交的任务据此放弃
    cancel_event: threading.Event = field(default_factory=threading.Event)


def convert_file(candidate: CandidateFile, context: WorkerContext) -> FileOutcome:
    """处理单个文件；无论结果如何，进度计数恰好加一。"""

    outcome: Optional[FileOutcome] = None
    try:
        outcome = _convert(candidate, context)
        return outcome
    finally:
        completed = context.counter.increment()
        if context.progress_callback is not None:
            mark = _STATUS_MARKS.get(outcome.status, MARK_ERROR) if outcome else MARK_ERROR
            context.progress_callback(
                ProgressUpdate(
                    total=context.counter.total,
                    completed=completed,
                    message=f"{mark} {candidate.path.name}",
                )
            )


def _convert(candidate: CandidateFile, context: WorkerContext) -> FileOutcome:
    source = candidate.path
    engine = context.engine
    run_log = context.run_log
    manager = context.output_manager

    try:
        plan = classify(candidate, engine, context.config.quality)
    except UnreadableInputError as exc:
        return record_failure(
            context,
            FileOutcome.failed(source, REASON_UNREADABLE_INPUT, str(exc), hint=HINT_CORRUPT_INPUT),
        )

    destination = plan.output_path
    if not manager.claim(destination):
        run_log.write(f"{MARK_SKIPPED} 跳过: {source.name}（已存在 {destination.name}）")
        return FileOutcome.skipped(source, destination)

    if context.cancel_event.is_set():
        return _cancelled(context, source, destination)

    run_log.write(f"{MARK_CONVERTING} 转换: {resolve_path(source)} -> {destination.name}")
    partial = manager.partial_path(destination)

    try:
        outcome = _encode_and_commit(plan, partial, context)
    except Exception as exc:  # noqa: BLE001
        manager.discard(partial)
        LOGGER.exception("编码阶段出现未预期的异常：%s", source)
        return record_failure(
            context,
            FileOutcome.failed(
                source,
                REASON_ENCODER_ERROR,
                f"{type(exc).__name__}: {exc}",
                attempted_output=destination,
            ),
        )

    if outcome.status == STATUS_SUCCESS and context.config.delete_original:
        outcome.message = _delete_original(source, run_log)
    return outcome


def _encode_and_commit(plan: ConversionPlan, partial: Path, context: WorkerContext) -> FileOutcome:
    """编码到临时文件、校验并提交；已知错误转为失败结果，其余异常交由调用方清理。"""

    source = plan.source
    destination = plan.output_path
    engine = context.engine
    manager = context.output_manager
    run_log = context.run_log

    try:
        engine.encode(plan, partial)
    except EncoderError as exc:
        manager.discard(partial)
        detail = exc.detail or str(exc)
        return record_failure(
            context,
            FileOutcome.failed(source, REASON_ENCODER_ERROR, detail, attempted_output=destination, hint=exc.hint),
        )

    try:
        _validate_output(engine, plan, partial)
    except InvalidOutputError as exc:
        manager.discard(partial)
        return record_failure(
            context,
            FileOutcome.failed(source, REASON_INVALID_OUTPUT, str(exc), attempted_output=destination),
        )

    if context.cancel_event.is_set():
        manager.discard(partial)
        return _cancelled(context, source, destination)

    bytes_in = _file_size(source)
    bytes_out = _file_size(partial)
    try:
        committed = manager.commit(partial, destination)
    except OSError as exc:
        manager.discard(partial)
        detail = str(exc)
        return record_failure(
            context,
            FileOutcome.failed(
                source,
                REASON_ENCODER_ERROR,
                detail,
                attempted_output=destination,
                hint=diagnose_failure(detail),
            ),
        )
    if not committed:
        run_log.write(f"{MARK_SKIPPED} 跳过: {source.name}（转换期间出现 {destination.name}）")
        return FileOutcome.skipped(source, destination)

    run_log.write(
        f"{MARK_SUCCESS} 成功: {source.name} ({format_size(bytes_in)} → {format_size(bytes_out)}, "
        f"{format_delta(bytes_in, bytes_out)})"
    )
    return FileOutcome.success(source, destination, bytes_in, bytes_out)


def _cancelled(context: WorkerContext, source: Path, destination: Path) -> FileOutcome:
    return record_failure(
        context,
        FileOutcome.failed(source, REASON_ENCODER_ERROR, "处理已取消", attempted_output=destination),
    )


def _validate_output(engine: ImageEngine, plan: ConversionPlan, partial: Path) -> None:
    """事后校验输出文件：存在、尺寸可读，gif 至少一帧。"""

    if not partial.is_file():
        raise InvalidOutputError(f"外部工具未生成输出文件: {plan.output_path.name}")
    try:
        engine.probe_dimensions(partial)
        if plan.target_ext == TARGET_GIF and engine.probe_frame_count(partial) < 1:
            raise InvalidOutputError(f"输出 GIF 不包含任何帧: {plan.output_path.name}")
    except UnreadableInputError as exc:
        raise InvalidOutputError(f"输出文件无效: {plan.output_path.name}") from exc


def _delete_original(source: Path, run_log: RunLog) -> Optional[str]:
    """删除源文件；失败只记录，不影响成功结果。"""

    try:
        source.unlink()
    except OSError as exc:
        message = f"删除源文件失败: {exc}"
        LOGGER.warning("%s: %s", source, message)
        run_log.write(f"{MARK_WARNING} {message} ({source.name})")
        return message
    run_log.write(f"{MARK_DELETED} 已删除源文件: {source.name}")
    return None


def record_failure(context: WorkerContext, outcome: FileOutcome) -> FileOutcome:
    """将失败结果写入运行日志与进程日志。"""

    run_log = context.run_log
    run_log.write(f"{MARK_ERROR} 错误: {resolve_path(outcome.source_path)} ({outcome.reason})")
    if outcome.message:
        run_log.write(f"   详情: {outcome.message}")
    if outcome.hint:
        run_log.write(f"   提示: {HINT_MESSAGES.get(outcome.hint, outcome.hint)}")
    LOGGER.warning("转换失败 %s: %s", outcome.source_path, outcome.reason)
    return outcome


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
