"""转换引擎接口、工厂与错误诊断。"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Protocol, Tuple

from webp_converter.core.config import RunConfig
from webp_converter.core.models import (
    HINT_CORRUPT_INPUT,
    HINT_DISK_SPACE,
    HINT_PERMISSION,
    ConversionPlan,
)


class ImageEngine(Protocol):
    """外部图像工具的调用契约：只读探测 + 编码。"""

    name: str

    def probe_dimensions(self, path: Path) -> Tuple[int, int]:
        """返回 (宽, 高)；文件不可读时抛出 UnreadableInputError。"""

    def probe_frame_count(self, path: Path) -> int:
        ...

    def probe_has_alpha(self, path: Path) -> bool:
        ...

    def encode(self, plan: ConversionPlan, destination: Path) -> None:
        """按计划编码到 ``destination``；失败时抛出 EncoderError。"""

    def terminate_all(self) -> int:
        """终止所有仍在运行的子进程，返回终止数量。"""


def create_engine(config: RunConfig) -> ImageEngine:
    """根据配置创建引擎；ImageMagick 不可用时抛出 MissingDependencyError。"""

    if config.engine == "pillow":
        from webp_converter.processing.pillow_engine import PillowEngine

        return PillowEngine()

    from webp_converter.processing.magick import MagickEngine

    return MagickEngine.detect(config.magick_path, timeout=config.timeout)


_HINT_PATTERNS = (
    (HINT_PERMISSION, re.compile(r"permission denied|not authorized|operation not permitted|read-only file system", re.I)),
    (HINT_DISK_SPACE, re.compile(r"no space left|disk full|quota exceeded|cache resources exhausted", re.I)),
    (
        HINT_CORRUPT_INPUT,
        re.compile(
            r"corrupt|improper image header|insufficient image data|unexpected end|"
            r"decode|truncated|cannot identify image|no decode delegate",
            re.I,
        ),
    ),
)


def diagnose_failure(detail: str) -> Optional[str]:
    """根据工具输出粗略判断失败原因，仅用于排查提示。"""

    for hint, pattern in _HINT_PATTERNS:
        if pattern.search(detail or ""):
            return hint
    return None


HINT_MESSAGES = {
    HINT_PERMISSION: "权限不足，请检查目录/文件权限",
    HINT_DISK_SPACE: "磁盘空间不足",
    HINT_CORRUPT_INPUT: "源文件可能已损坏",
    "timeout": "外部工具执行超时，已强制终止",
}
