"""输出格式判定：动画 → gif，透明/png → png，其它 → jpg。"""

from __future__ import annotations

import logging
from pathlib import Path

from webp_converter.core.models import KNOWN_INNER_EXTENSIONS, CandidateFile, ConversionPlan, EncoderParams
from webp_converter.processing.engine import ImageEngine

LOGGER = logging.getLogger(__name__)

TARGET_GIF = "gif"
TARGET_PNG = "png"
TARGET_JPG = "jpg"

# 静态 WebP 若原名为 *.gif.webp，仍输出单帧 GIF，保留原本的容器格式。
STATIC_GIF_KEEPS_CONTAINER = True

GIF_PARAMS = EncoderParams(colors=256, dither="FloydSteinberg", coalesce=True, optimize_layers=True)
PNG_PARAMS = EncoderParams(compression_level=9, compression_filter=5, strip=True)


def jpeg_params(quality: int) -> EncoderParams:
    return EncoderParams(quality=quality, auto_orient=True, strip=True)


def classify(candidate: CandidateFile, engine: ImageEngine, quality: int = 90) -> ConversionPlan:
    """根据内容与文件名决定输出格式和编码参数。

    只做只读探测，不修改文件系统。输入不可读时抛出 UnreadableInputError。
    """

    source = candidate.path
    engine.probe_dimensions(source)

    inner = candidate.inner_ext.lower()
    frames = engine.probe_frame_count(source)
    if frames >= 2:
        target, params = TARGET_GIF, GIF_PARAMS
    elif inner == TARGET_GIF and STATIC_GIF_KEEPS_CONTAINER:
        target, params = TARGET_GIF, GIF_PARAMS
    elif inner == TARGET_PNG or engine.probe_has_alpha(source):
        target, params = TARGET_PNG, PNG_PARAMS
    else:
        target, params = TARGET_JPG, jpeg_params(quality)

    output_path = build_output_path(candidate, target)
    LOGGER.debug("%s -> %s (帧数 %d)", source.name, output_path.name, frames)
    return ConversionPlan(source=source, target_ext=target, output_path=output_path, params=params)


def build_output_path(candidate: CandidateFile, target_ext: str) -> Path:
    """去掉外层后缀，内层扩展名为已知图片格式时一并去掉，再追加目标扩展名。

    ``photo.jpg.webp`` → ``photo.jpg``；``icon.webp`` → ``icon.png``。
    """

    if candidate.inner_ext and candidate.inner_ext.lower() in KNOWN_INNER_EXTENSIONS:
        base = candidate.stem
    elif candidate.inner_ext:
        base = f"{candidate.stem}.{candidate.inner_ext}"
    else:
        base = candidate.stem
    return candidate.path.parent / f"{base}.{target_ext}"
