"""结果汇总与报告生成。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from webp_converter.core.models import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    BatchReport,
    FileOutcome,
)

HEADER = ["source_path", "output_path", "status", "reason", "hint", "bytes_in", "bytes_out", "message"]


def aggregate(outcomes: Iterable[FileOutcome], total: int) -> BatchReport:
    """按结果类型汇总，不依赖日志文本。"""

    report = BatchReport(total=total)
    for outcome in outcomes:
        if outcome.status == STATUS_SUCCESS:
            report.succeeded.append(outcome)
        elif outcome.status == STATUS_SKIPPED:
            report.skipped.append(outcome)
        elif outcome.status == STATUS_FAILED:
            report.failed.append(outcome)
        else:
            raise ValueError(f"未知的结果状态: {outcome.status}")
    return report


def write_csv_report(outcomes: Iterable[FileOutcome], report_path: Path) -> Path:
    """将处理结果写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            writer.writerow(
                [
                    str(record.source_path),
                    str(record.output_path) if record.output_path else "",
                    record.status,
                    record.reason or "",
                    record.hint or "",
                    _format_int(record.bytes_in),
                    _format_int(record.bytes_out),
                    record.message or "",
                ]
            )
    return report_path


def _format_int(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)
