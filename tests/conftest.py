"""测试共用的图片构造工具与脚本化引擎。"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Tuple

import pytest
from PIL import Image, features

from webp_converter.core.exceptions import EncoderError, UnreadableInputError
from webp_converter.core.models import ConversionPlan
from webp_converter.processing.engine import diagnose_failure

GARBAGE = b"GARBAGE"


def save_static_webp(path: Path, color: str = "blue", size: Tuple[int, int] = (32, 32)) -> Path:
    Image.new("RGB", size, color).save(path, format="WEBP", quality=90)
    return path


def save_alpha_webp(path: Path) -> Path:
    image = Image.new("RGBA", (32, 32), (255, 0, 0, 255))
    image.paste((0, 0, 0, 0), (0, 0, 16, 16))
    image.save(path, format="WEBP", lossless=True)
    return path


def save_animated_webp(path: Path, colors: Iterable[str] = ("red", "green", "blue")) -> Path:
    frames = [Image.new("RGB", (32, 32), color) for color in colors]
    frames[0].save(path, format="WEBP", save_all=True, append_images=frames[1:], duration=100, loop=0)
    return path


def write_fake_source(path: Path, corrupt: bool = False) -> Path:
    path.write_bytes(GARBAGE if corrupt else b"RIFF-fake-webp")
    return path


class FakeEngine:
    """按脚本返回探测结果的引擎，同时统计并发中的编码调用数。"""

    name = "fake"

    def __init__(
        self,
        *,
        frames: int = 1,
        alpha: bool = False,
        fail_detail: Optional[str] = None,
        write_garbage: bool = False,
        skip_write: bool = False,
        delay: float = 0.0,
        crash_after_write: bool = False,
    ) -> None:
        self.frames = frames
        self.alpha = alpha
        self.fail_detail = fail_detail
        self.write_garbage = write_garbage
        self.skip_write = skip_write
        self.delay = delay
        self.crash_after_write = crash_after_write
        self.encoded: list[ConversionPlan] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def probe_dimensions(self, path: Path) -> Tuple[int, int]:
        if not path.is_file() or path.read_bytes().startswith(GARBAGE):
            raise UnreadableInputError(f"无法读取图像: {path}")
        return 10, 10

    def probe_frame_count(self, path: Path) -> int:
        return self.frames

    def probe_has_alpha(self, path: Path) -> bool:
        return self.alpha

    def encode(self, plan: ConversionPlan, destination: Path) -> None:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_detail is not None:
                raise EncoderError("fake failure", detail=self.fail_detail, hint=diagnose_failure(self.fail_detail))
            if not self.skip_write:
                destination.write_bytes(GARBAGE if self.write_garbage else b"FAKE-" + plan.target_ext.encode())
            if self.crash_after_write:
                raise RuntimeError("encoder crashed mid-write")
            with self._lock:
                self.encoded.append(plan)
        finally:
            with self._lock:
                self.in_flight -= 1

    def terminate_all(self) -> int:
        return 0


@pytest.fixture
def requires_webp() -> None:
    if not features.check("webp"):
        pytest.skip("当前 Pillow 未编译 WebP 支持")
