"""ImageMagick 命令行封装。

兼容 IM7（``magick`` / ``magick identify``）与 IM6（``convert`` + ``identify``）。
所有调用都通过子进程完成，正在运行的子进程会被登记，便于中断时统一终止。
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Set, Tuple

from webp_converter.core.exceptions import EncoderError, MissingDependencyError, UnreadableInputError
from webp_converter.core.models import HINT_TIMEOUT, ConversionPlan
from webp_converter.processing.engine import diagnose_failure

LOGGER = logging.getLogger(__name__)

ENCODER_PREFIXES = {"jpg": "jpeg", "png": "png", "gif": "gif"}

PROBE_TIMEOUT = 60.0


@dataclass(frozen=True)
class Toolchain:
    """探测到的 ImageMagick 可执行文件。"""

    convert: Tuple[str, ...]
    identify: Tuple[str, ...]

    @property
    def backend(self) -> str:
        if len(self.identify) > 1:
            return "imagemagick:magick"
        return "imagemagick:convert"


def detect_toolchain(override: Optional[Path] = None) -> Toolchain:
    """查找 ImageMagick；未安装时抛出 MissingDependencyError。"""

    if override is not None:
        binary = shutil.which(str(override))
        if binary is None:
            raise MissingDependencyError(f"指定的 ImageMagick 不可执行: {override}")
        if Path(binary).name.lower().startswith("convert"):
            identify = shutil.which("identify")
            if identify is None:
                raise MissingDependencyError("使用 convert 时还需要 identify 命令")
            return Toolchain(convert=(binary,), identify=(identify,))
        return Toolchain(convert=(binary,), identify=(binary, "identify"))

    magick = shutil.which("magick")
    if magick:
        return Toolchain(convert=(magick,), identify=(magick, "identify"))

    convert = shutil.which("convert")
    identify = shutil.which("identify")
    if convert and identify:
        return Toolchain(convert=(convert,), identify=(identify,))

    raise MissingDependencyError("未安装 ImageMagick（需要 magick，或 convert + identify）")


def build_encode_command(toolchain: Toolchain, plan: ConversionPlan, destination: Path) -> list[str]:
    """根据转换计划拼接编码命令，使用显式编码前缀指定输出格式。"""

    params = plan.params
    cmd = [*toolchain.convert, str(plan.source)]
    if params.coalesce:
        cmd.append("-coalesce")
    if params.auto_orient:
        cmd.append("-auto-orient")
    if params.strip:
        cmd.append("-strip")
    if params.dither:
        cmd += ["-dither", params.dither]
    if params.colors:
        cmd += ["-colors", str(params.colors)]
    if params.optimize_layers:
        cmd += ["-layers", "Optimize"]
    if params.quality is not None:
        cmd += ["-quality", str(params.quality)]
    if params.compression_level is not None:
        cmd += ["-define", f"png:compression-level={params.compression_level}"]
    if params.compression_filter is not None:
        cmd += ["-define", f"png:compression-filter={params.compression_filter}"]
    cmd.append(f"{ENCODER_PREFIXES[plan.target_ext]}:{destination}")
    return cmd


def parse_has_alpha(channels: str) -> bool:
    """``%[channels]`` 输出形如 ``srgba`` / ``graya``，以 a 结尾表示带透明通道。"""

    first = channels.strip().split()
    if not first:
        return False
    return first[0].lower().endswith("a")


class MagickEngine:
    """基于 ImageMagick 子进程的转换引擎。"""

    name = "imagemagick"

    def __init__(self, toolchain: Toolchain, timeout: Optional[float] = None) -> None:
        self.toolchain = toolchain
        self.timeout = timeout
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()

    @classmethod
    def detect(cls, override: Optional[Path] = None, timeout: Optional[float] = None) -> "MagickEngine":
        toolchain = detect_toolchain(override)
        engine = cls(toolchain, timeout=timeout)
        engine.check_webp_support()
        LOGGER.info("使用 %s: %s", toolchain.backend, " ".join(toolchain.convert))
        return engine

    def check_webp_support(self) -> None:
        returncode, output = self._run([*self.toolchain.convert, "-version"], timeout=PROBE_TIMEOUT)
        if returncode != 0 or "webp" not in output.lower():
            raise MissingDependencyError("当前 ImageMagick 不支持 WebP")

    def probe_dimensions(self, path: Path) -> Tuple[int, int]:
        output = self._identify(path, "%w %h\\n", ping=True)
        try:
            width, height = (int(part) for part in output.splitlines()[0].split()[:2])
        except (IndexError, ValueError) as exc:
            raise UnreadableInputError(f"无法解析图像尺寸: {path}") from exc
        if width <= 0 or height <= 0:
            raise UnreadableInputError(f"图像尺寸无效: {path}")
        return width, height

    def probe_frame_count(self, path: Path) -> int:
        output = self._identify(path, "%n\\n")
        try:
            return int(output.splitlines()[0].strip())
        except (IndexError, ValueError) as exc:
            raise UnreadableInputError(f"无法解析帧数: {path}") from exc

    def probe_has_alpha(self, path: Path) -> bool:
        output = self._identify(path, "%[channels]\\n", ping=True)
        return parse_has_alpha(output.splitlines()[0] if output else "")

    def encode(self, plan: ConversionPlan, destination: Path) -> None:
        cmd = build_encode_command(self.toolchain, plan, destination)
        LOGGER.debug("执行: %s", " ".join(cmd))
        try:
            returncode, output = self._run(cmd, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise EncoderError(
                f"外部工具超时（{self.timeout} 秒）",
                detail=f"timeout after {self.timeout}s",
                hint=HINT_TIMEOUT,
            ) from exc
        except OSError as exc:
            detail = str(exc)
            raise EncoderError("无法启动外部工具", detail=detail, hint=diagnose_failure(detail)) from exc
        if returncode != 0:
            detail = output.strip()
            raise EncoderError(f"外部工具退出码 {returncode}", detail=detail, hint=diagnose_failure(detail))

    def terminate_all(self) -> int:
        with self._lock:
            processes = list(self._processes)
        for proc in processes:
            if proc.poll() is None:
                proc.kill()
        return len(processes)

    def _identify(self, path: Path, fmt: str, ping: bool = False) -> str:
        cmd = [*self.toolchain.identify]
        if ping:
            cmd.append("-ping")
        cmd += ["-format", fmt, str(path)]
        try:
            returncode, output = self._run(cmd, timeout=PROBE_TIMEOUT, merge_stderr=False)
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise UnreadableInputError(f"探测失败: {path}") from exc
        if returncode != 0 or not output.strip():
            raise UnreadableInputError(f"无法读取图像: {path}")
        return output

    def _run(self, cmd: Sequence[str], timeout: Optional[float], merge_stderr: bool = True) -> Tuple[int, str]:
        """运行子进程并返回 (退出码, 输出)；超时会先杀掉进程再抛出 TimeoutExpired。"""

        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
        with self._lock:
            self._processes.add(proc)
        try:
            try:
                output, _ = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.communicate()
                raise
            return proc.returncode, output or ""
        finally:
            with self._lock:
                self._processes.discard(proc)
