"""基于 Pillow 的进程内转换引擎。

在未安装 ImageMagick 的环境下使用，探测与编码语义与 ImageMagick 引擎保持一致。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from PIL import Image, ImageOps, ImageSequence, UnidentifiedImageError

from webp_converter.core.exceptions import EncoderError, UnreadableInputError
from webp_converter.core.models import ConversionPlan, EncoderParams
from webp_converter.processing.engine import diagnose_failure

LOGGER = logging.getLogger(__name__)

ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}
DEFAULT_FRAME_DURATION = 100

# 超出 Image.MAX_IMAGE_PIXELS 的输入按不可读处理
_READ_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)


class PillowEngine:
    """进程内引擎，不启动子进程。"""

    name = "pillow"

    def probe_dimensions(self, path: Path) -> Tuple[int, int]:
        try:
            with Image.open(path) as img:
                width, height = img.size
        except _READ_ERRORS as exc:
            LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
            raise UnreadableInputError(f"无法读取图像: {path}") from exc
        if width <= 0 or height <= 0:
            raise UnreadableInputError(f"图像尺寸无效: {path}")
        return width, height

    def probe_frame_count(self, path: Path) -> int:
        try:
            with Image.open(path) as img:
                return int(getattr(img, "n_frames", 1))
        except _READ_ERRORS as exc:
            raise UnreadableInputError(f"无法读取帧数: {path}") from exc

    def probe_has_alpha(self, path: Path) -> bool:
        try:
            with Image.open(path) as img:
                return img.mode in ALPHA_MODES or "transparency" in img.info
        except _READ_ERRORS as exc:
            raise UnreadableInputError(f"无法读取通道信息: {path}") from exc

    def encode(self, plan: ConversionPlan, destination: Path) -> None:
        try:
            with Image.open(plan.source) as img:
                if plan.target_ext == "gif":
                    _save_gif(img, plan.params, destination)
                elif plan.target_ext == "png":
                    _save_png(img, plan.params, destination)
                else:
                    _save_jpeg(img, plan.params, destination)
        except _READ_ERRORS as exc:
            detail = str(exc)
            raise EncoderError("Pillow 编码失败", detail=detail, hint=diagnose_failure(detail)) from exc

    def terminate_all(self) -> int:
        return 0


def _save_jpeg(img: Image.Image, params: EncoderParams, destination: Path) -> None:
    image = ImageOps.exif_transpose(img) if params.auto_orient else img
    if image.mode != "RGB":
        image = _flatten_to_rgb(image)
    # 不传 exif / icc_profile 即为去除元数据
    save_params = {"quality": params.quality or 90, "optimize": True}
    if not params.strip and "icc_profile" in img.info:
        save_params["icc_profile"] = img.info["icc_profile"]
    image.save(destination, format="JPEG", **save_params)


def _save_png(img: Image.Image, params: EncoderParams, destination: Path) -> None:
    image = img
    if image.mode not in {"RGB", "RGBA", "L", "LA", "P"}:
        image = image.convert("RGBA")
    save_params = {"optimize": True, "compress_level": params.compression_level or 9}
    if params.strip:
        save_params["icc_profile"] = None
    image.save(destination, format="PNG", **save_params)


def _save_gif(img: Image.Image, params: EncoderParams, destination: Path) -> None:
    dither = Image.Dither.FLOYDSTEINBERG if params.dither else Image.Dither.NONE
    frames: list[Image.Image] = []
    durations: list[int] = []
    for frame in ImageSequence.Iterator(img):
        rgb = _flatten_to_rgb(frame) if frame.mode != "RGB" else frame.convert("RGB")
        frames.append(rgb.quantize(colors=params.colors or 256, dither=dither))
        durations.append(int(frame.info.get("duration") or DEFAULT_FRAME_DURATION))

    if not frames:
        raise ValueError("图像不包含任何帧")

    frames[0].save(
        destination,
        format="GIF",
        save_all=True,
        append_images=frames[1:],
        optimize=params.optimize_layers,
        duration=durations if len(durations) > 1 else durations[0],
        loop=int(img.info.get("loop", 0)),
    )


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """将带透明通道的图像叠加到白色背景上转换为 RGB。"""

    if img.mode in {"RGBA", "LA", "PA"}:
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return img.convert("RGB")
