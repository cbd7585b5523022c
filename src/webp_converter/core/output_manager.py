"""输出路径占用、临时文件与原子提交。"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Set

LOGGER = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


class OutputManager:
    """在一次运行内协调各工作线程对输出路径的使用。

    - 同一输出路径只允许一个线程认领，其余视为跳过；
    - 编码先写入同目录的隐藏临时文件，校验通过后再原子改名；
    - 中断时可统一清理尚未提交的临时文件。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed: Set[Path] = set()
        self._partials: Set[Path] = set()

    def claim(self, destination: Path) -> bool:
        """认领输出路径；目标已存在或已被其它线程认领时返回 False。"""

        with self._lock:
            if destination in self._claimed:
                return False
            if os.path.lexists(destination):
                return False
            self._claimed.add(destination)
            return True

    def partial_path(self, destination: Path) -> Path:
        """生成与目标同目录的临时文件路径并登记。"""

        token = uuid.uuid4().hex[:8]
        partial = destination.with_name(f".{destination.name}.{token}{PARTIAL_SUFFIX}")
        with self._lock:
            self._partials.add(partial)
        return partial

    def commit(self, partial: Path, destination: Path) -> bool:
        """将临时文件移动到最终位置；目标在此期间出现则放弃并返回 False。"""

        with self._lock:
            self._partials.discard(partial)
            if os.path.lexists(destination):
                _unlink_quietly(partial)
                return False
            os.replace(partial, destination)
            return True

    def discard(self, partial: Path) -> None:
        """删除未提交的临时文件。"""

        with self._lock:
            self._partials.discard(partial)
        _unlink_quietly(partial)

    def cleanup_partials(self) -> int:
        """删除所有仍在登记中的临时文件，返回清理数量。"""

        with self._lock:
            pending = list(self._partials)
            self._partials.clear()
        removed = 0
        for partial in pending:
            if _unlink_quietly(partial):
                removed += 1
        if removed:
            LOGGER.info("已清理 %d 个未完成的临时文件", removed)
        return removed


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        LOGGER.warning("删除临时文件失败 %s: %s", path, exc)
        return False
    return True
