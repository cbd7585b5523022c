"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

OutcomeStatus = str  # success | skipped | failed

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

REASON_UNREADABLE_INPUT = "unreadable-input"
REASON_ENCODER_ERROR = "encoder-error"
REASON_INVALID_OUTPUT = "invalid-output"

HINT_PERMISSION = "permission"
HINT_DISK_SPACE = "disk-space"
HINT_CORRUPT_INPUT = "corrupt-input"
HINT_TIMEOUT = "timeout"

# 内层扩展名属于这些格式时，输出文件名会去掉它
KNOWN_INNER_EXTENSIONS = frozenset({"gif", "png", "jpg", "jpeg"})


@dataclass(frozen=True, slots=True)
class CandidateFile:
    """扫描阶段得到的待转换文件。

    以 ``photo.gif.webp`` 为例：stem 为 ``photo``，inner_ext 为 ``gif``，outer_ext 为 ``webp``。
    """

    path: Path
    stem: str
    inner_ext: str
    outer_ext: str

    @classmethod
    def from_path(cls, path: Path, suffix: str = ".webp") -> "CandidateFile":
        name = path.name
        if name.lower().endswith(suffix.lower()):
            outer_ext = name[len(name) - len(suffix) + 1 :]
            remainder = name[: len(name) - len(suffix)]
        else:
            outer_ext = ""
            remainder = name

        head, dot, tail = remainder.rpartition(".")
        if dot and head and tail:
            return cls(path=path, stem=head, inner_ext=tail, outer_ext=outer_ext)
        return cls(path=path, stem=remainder, inner_ext="", outer_ext=outer_ext)


@dataclass(frozen=True, slots=True)
class EncoderParams:
    """交给外部工具的编码参数。"""

    quality: Optional[int] = None
    colors: Optional[int] = None
    dither: Optional[str] = None
    coalesce: bool = False
    optimize_layers: bool = False
    compression_level: Optional[int] = None
    compression_filter: Optional[int] = None
    auto_orient: bool = False
    strip: bool = False


@dataclass(frozen=True, slots=True)
class ConversionPlan:
    """单个文件的转换决策。"""

    source: Path
    target_ext: str
    output_path: Path
    params: EncoderParams


@dataclass(slots=True)
class FileOutcome:
    """记录单个文件的处理结果（用于报告/日志）。"""

    source_path: Path
    status: OutcomeStatus
    output_path: Optional[Path] = None
    message: Optional[str] = None
    reason: Optional[str] = None
    hint: Optional[str] = None
    bytes_in: Optional[int] = None
    bytes_out: Optional[int] = None

    @classmethod
    def success(
        cls, source: Path, output: Path, bytes_in: int, bytes_out: int, note: Optional[str] = None
    ) -> "FileOutcome":
        return cls(
            source_path=source,
            status=STATUS_SUCCESS,
            output_path=output,
            message=note,
            bytes_in=bytes_in,
            bytes_out=bytes_out,
        )

    @classmethod
    def skipped(cls, source: Path, existing_output: Path, note: Optional[str] = None) -> "FileOutcome":
        return cls(source_path=source, status=STATUS_SKIPPED, output_path=existing_output, message=note)

    @classmethod
    def failed(
        cls,
        source: Path,
        reason: str,
        detail: Optional[str] = None,
        attempted_output: Optional[Path] = None,
        hint: Optional[str] = None,
    ) -> "FileOutcome":
        return cls(
            source_path=source,
            status=STATUS_FAILED,
            output_path=attempted_output,
            message=detail,
            reason=reason,
            hint=hint,
        )


@dataclass(frozen=True, slots=True)
class PreviewEntry:
    """dry-run 预览中的一行。"""

    source: Path
    planned_output: Optional[Path]
    note: Optional[str] = None


@dataclass(slots=True)
class DryRunPreview:
    """dry-run 模式下的候选文件预览。"""

    total: int
    entries: list[PreviewEntry] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.total > len(self.entries)


@dataclass(slots=True)
class BatchReport:
    """批处理的最终汇总。"""

    succeeded: list[FileOutcome] = field(default_factory=list)
    skipped: list[FileOutcome] = field(default_factory=list)
    failed: list[FileOutcome] = field(default_factory=list)
    total: int = 0
    preview: Optional[DryRunPreview] = None
    log_path: Optional[Path] = None

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def skip_count(self) -> int:
        return len(self.skipped)

    @property
    def error_count(self) -> int:
        return len(self.failed)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def all_outcomes(self) -> list[FileOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.succeeded, *self.skipped, *self.failed]
