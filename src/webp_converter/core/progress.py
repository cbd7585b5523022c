"""进度更新的数据模型与线程安全计数器。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    message: Optional[str] = None
    status: str = "running"


class ProgressCounter:
    """多个工作线程共享的完成计数，只增不减，且不超过总数。"""

    def __init__(self, total: int) -> None:
        self.total = total
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        """计数加一并返回新值。"""

        with self._lock:
            if self._value >= self.total:
                LOGGER.warning("进度计数已达总数 %d，忽略多余的递增", self.total)
                return self._value
            self._value += 1
            return self._value
