"""Utility 模块。

提供通用工具函数。
"""

from .json_extract import extract_json, validate_json_extraction

__all__ = [
    "extract_json",
    "validate_json_extraction",
]
