"""文件大小格式化工具。"""

from __future__ import annotations

KIB = 1024
MIB = 1024 * 1024


def format_size(num_bytes: int) -> str:
    """将字节数格式化为 ``12B`` / ``3.4K`` / ``1.2M`` 形式。"""

    if num_bytes >= MIB:
        return f"{num_bytes / MIB:.1f}M"
    if num_bytes >= KIB:
        return f"{num_bytes / KIB:.1f}K"
    return f"{num_bytes}B"


def format_delta(bytes_in: int, bytes_out: int) -> str:
    """返回体积变化百分比，例如 ``-35.2%``。"""

    if bytes_in <= 0:
        return "n/a"
    change = (bytes_out - bytes_in) / bytes_in * 100
    return f"{change:+.1f}%"
