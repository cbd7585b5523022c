"""路径规范化工具。"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def resolve_path(path: PathLike) -> Path:
    """将任意路径转换为规范化的绝对路径，文件可以尚不存在。

    该函数不会抛出异常：解析失败时退化为“当前目录 + 路径”的手工拼接。
    """

    raw = os.fspath(path)
    try:
        return Path(raw).resolve(strict=False)
    except (OSError, RuntimeError) as exc:
        LOGGER.debug("路径解析失败，改用手工拼接: %s (%s)", raw, exc)

    if os.path.isabs(raw):
        return Path(os.path.normpath(raw))

    base = _current_directory()
    if base is None:
        return Path(os.path.normpath(raw))
    return Path(os.path.normpath(os.path.join(base, raw)))


def _current_directory() -> str | None:
    try:
        return os.getcwd()
    except OSError:
        # 当前目录已被删除时 getcwd 会失败
        return os.environ.get("PWD") or None
