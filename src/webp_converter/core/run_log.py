"""单次运行的持久化文本日志。

每次运行创建一个带时间戳的日志文件，逐行追加事件。写入经由 ``logging.FileHandler``，
由 handler 自身的锁保证多线程追加时每行完整。
"""

from __future__ import annotations

import logging
from datetime import datetime
from itertools import count
from pathlib import Path
from typing import Optional

from webp_converter.core.models import BatchReport

LOG_PREFIX = "webp_convert"

MARK_CONVERTING = "→"
MARK_SKIPPED = "⊘"
MARK_SUCCESS = "✓"
MARK_ERROR = "✗"
MARK_DELETED = "🗑"
MARK_WARNING = "!"


class RunLog:
    """追加式运行日志。``log_dir`` 为 None 时不挂接任何处理器，事件被丢弃。"""

    def __init__(self, log_dir: Optional[Path], *, started_at: Optional[datetime] = None) -> None:
        self.started_at = started_at or datetime.now()
        self.path: Optional[Path] = None
        self._handler: Optional[logging.Handler] = None
        # 独立的 Logger 实例，不注册到全局 logger 树
        self._logger = logging.Logger("webp_converter.run")
        self._logger.setLevel(logging.INFO)

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            self.path = _unique_log_path(log_dir, self.started_at)
            handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
            self._logger.addHandler(handler)
            self._handler = handler

    def write(self, message: str) -> None:
        """追加一行事件。"""

        self._logger.info(message)

    def banner(self, total: int, workers: int, engine: str) -> None:
        self.write("=== WEBP 批量转换 ===")
        self.write(f"开始时间: {self.started_at:%Y-%m-%d %H:%M:%S}")
        self.write(f"待处理文件: {total}")
        self.write(f"并发数: {workers}")
        self.write(f"转换引擎: {engine}")
        self.write("---")

    def write_summary(self, report: BatchReport) -> None:
        self.write("---")
        self.write("=== 报告 ===")
        self.write(f"成功转换: {report.success_count}")
        self.write(f"跳过: {report.skip_count}")
        self.write(f"错误: {report.error_count}")
        self.write(f"总计: {report.total}")

    def close(self) -> None:
        if self._handler is None:
            return
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> "RunLog":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _unique_log_path(log_dir: Path, started_at: datetime) -> Path:
    """按时间戳命名日志文件，重名时追加序号。"""

    base = log_dir / f"{LOG_PREFIX}_{started_at:%Y%m%d_%H%M%S}.log"
    if not base.exists():
        return base
    for idx in count(1):
        candidate = base.with_name(f"{base.stem}_{idx}{base.suffix}")
        if not candidate.exists():
            return candidate
    return base
