"""文件扫描与筛选逻辑。"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, Set, Tuple

from webp_converter.core.models import CandidateFile
from webp_converter.core.paths import resolve_path

LOGGER = logging.getLogger(__name__)

_InodeKey = Tuple[int, int]


def _iter_candidate_files(root: Path, recursive: bool) -> Iterator[Path]:
    """遍历路径下的所有文件，跟随符号链接但不会重复进入同一目录。"""

    if root.is_file():
        yield root
        return

    if not root.is_dir():
        return

    if not recursive:
        for entry in sorted(root.iterdir()):
            if entry.is_file():
                yield entry
        return

    visited: Set[_InodeKey] = set()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        key = _inode_key(dirpath)
        if key is None or key in visited:
            LOGGER.debug("跳过重复或不可访问的目录: %s", dirpath)
            dirnames[:] = []
            continue
        visited.add(key)

        dirnames.sort()
        for name in sorted(filenames):
            candidate = Path(dirpath) / name
            if candidate.is_file():
                yield candidate


def _inode_key(path: str) -> _InodeKey | None:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_dev, stat.st_ino


def collect_candidates(root: Path, recursive: bool = True, suffix: str = ".webp") -> list[CandidateFile]:
    """扫描目录，返回文件名以 ``suffix`` 结尾（不区分大小写）的候选文件列表。"""

    resolved_root = resolve_path(root)
    lowered_suffix = suffix.lower()

    collected: list[CandidateFile] = []
    seen_paths: Set[Path] = set()
    for candidate in _iter_candidate_files(resolved_root, recursive):
        if not candidate.name.lower().endswith(lowered_suffix):
            continue
        # 只有后缀没有文件名的情况不处理
        if len(candidate.name) == len(suffix):
            continue

        absolute = resolve_path(candidate) if candidate.is_symlink() else candidate
        if absolute in seen_paths:
            continue
        seen_paths.add(absolute)
        collected.append(CandidateFile.from_path(candidate, suffix))

    collected.sort(key=lambda x: str(x.path).lower())
    return collected
