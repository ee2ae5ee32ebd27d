"""JSON 提取工具函数。

从模型回复中提取 JSON：去掉 markdown 代码块、变量声明等包装，
从第一个 { 或 [ 开始解析，失败时逐步截断尾部直到能够解析。
"""

from __future__ import annotations

import json
import re

__all__ = ["extract_json", "validate_json_extraction"]

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_VAR_RE = re.compile(r"^\s*(?:const|let|var)\s+\w+\s*=\s*([\s\S]*)", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

EXTRACTION_INCOMPLETE_WARNING = (
    "JSON extraction from model response may be incomplete or modified. "
    "The model may not have returned valid JSON."
)
EXTRACTION_INVALID_WARNING = "JSON extraction resulted in invalid JSON. The response may be malformed."


def _try_parse(value: str) -> str | None:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(_TRAILING_COMMA_RE.sub(r"\1", value))
        except json.JSONDecodeError:
            return None
    return json.dumps(parsed, indent=2, ensure_ascii=False)


def extract_json(text: str) -> str:
    """提取 JSON 文本。

    Args:
        text: 模型回复原文

    Returns:
        格式化后的 JSON 字符串；无法提取时返回原文
    """
    content = text.strip()

    fence = _FENCE_RE.search(content)
    if fence:
        content = fence.group(1)

    var = _VAR_RE.match(content)
    if var:
        content = var.group(1).strip()
        if content.endswith(";"):
            content = content[:-1]

    starts = [i for i in (content.find("{"), content.find("[")) if i != -1]
    if not starts:
        return text
    content = content[min(starts):]

    parsed = _try_parse(content)
    if parsed is not None:
        return parsed

    # 逐步截断：只在可能结束 JSON 的字符处尝试
    for end in range(len(content) - 1, 0, -1):
        if content[end - 1] not in "}]":
            continue
        parsed = _try_parse(content[:end])
        if parsed is not None:
            return parsed

    return text


def validate_json_extraction(original: str, extracted: str) -> str | None:
    """检查提取结果，异常时返回警告。"""
    try:
        json.loads(extracted)
    except json.JSONDecodeError:
        if extracted == original:
            return EXTRACTION_INCOMPLETE_WARNING
        return EXTRACTION_INVALID_WARNING
    return None
