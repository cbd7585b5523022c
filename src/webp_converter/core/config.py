"""转换任务的配置模型。"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from webp_converter.core.exceptions import InvalidConfigurationError

ProgressMode = str  # bar | simple | none
EngineName = str  # magick | pillow

PROGRESS_MODES = ("bar", "simple", "none")
ENGINES = ("magick", "pillow")

# 核心数极多的机器上也不要同时拉起过多外部进程。
MAX_WORKERS = 32
FALLBACK_WORKERS = 4


@dataclass(frozen=True, slots=True)
class RunConfig:
    """单次批量转换的配置集合，运行期间不可变。"""

    quality: int = 90
    max_workers: Optional[int] = None
    delete_original: bool = False
    dry_run: bool = False
    dry_run_limit: int = 20
    recursive: bool = True
    progress_mode: ProgressMode = "bar"
    engine: EngineName = "magick"
    magick_path: Optional[Path] = None
    timeout: Optional[float] = 300.0
    log_dir: Optional[Path] = None
    csv_report: Optional[Path] = None
    source_suffix: str = ".webp"


def validate_config(config: RunConfig) -> None:
    """检查配置取值范围，非法时抛出 InvalidConfigurationError。"""

    if not 1 <= config.quality <= 100:
        raise InvalidConfigurationError(f"质量参数必须在 1~100 之间: {config.quality}")
    if config.max_workers is not None and config.max_workers < 1:
        raise InvalidConfigurationError(f"并发数必须大于等于 1: {config.max_workers}")
    if config.progress_mode not in PROGRESS_MODES:
        raise InvalidConfigurationError(f"未知的进度显示模式: {config.progress_mode}")
    if config.engine not in ENGINES:
        raise InvalidConfigurationError(f"未知的转换引擎: {config.engine}")
    if config.timeout is not None and config.timeout <= 0:
        raise InvalidConfigurationError(f"超时时间必须大于 0: {config.timeout}")
    if config.dry_run_limit < 0:
        raise InvalidConfigurationError(f"预览条数不能为负数: {config.dry_run_limit}")
    if not config.source_suffix.startswith("."):
        raise InvalidConfigurationError(f"源文件后缀必须以 . 开头: {config.source_suffix}")


def resolve_worker_count(config: RunConfig) -> int:
    """确定工作线程数量：显式指定优先，否则使用逻辑 CPU 数，并限制在安全范围内。"""

    requested = config.max_workers
    if requested is None:
        requested = os.cpu_count() or FALLBACK_WORKERS
    return max(1, min(requested, MAX_WORKERS))
