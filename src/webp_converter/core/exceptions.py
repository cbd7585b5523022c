"""项目内使用的自定义异常定义。"""

from __future__ import annotations

from typing import Optional


class WebpConverterError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(WebpConverterError):
    """配置不合法时抛出。"""


class MissingDependencyError(WebpConverterError):
    """外部图像工具缺失或不支持 WebP 时抛出。"""


class ProcessingAborted(WebpConverterError):
    """任务被用户中断或取消时抛出。"""

    def __init__(self, message: str, interrupted: bool = False) -> None:
        super().__init__(message)
        self.interrupted = interrupted


class UnreadableInputError(WebpConverterError):
    """输入文件无法读取或已损坏。"""


class EncoderError(WebpConverterError):
    """外部工具编码失败。

    ``detail`` 保存工具的合并输出，``hint`` 为粗略的故障分类。
    """

    def __init__(self, message: str, detail: str = "", hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail
        self.hint = hint


class InvalidOutputError(WebpConverterError):
    """编码成功但输出文件无效。"""
