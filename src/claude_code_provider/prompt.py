"""对话消息转 prompt 文本。

claude-code-provider v0.1.0

CLI 只接受一个 prompt 字符串和一个系统提示词，
结构化对话需要先拍平：
- system 消息 -> 系统提示词（多条时取最后一条）
- user 消息 -> 原文；多条消息时加 "Human: " 前缀
- assistant 消息 -> "Assistant: ..."
- tool 消息 -> "Tool Result (name): json"
- 图片不被 CLI 支持，忽略并给出警告
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "PromptText",
    "to_prompt_text",
]

logger = logging.getLogger(__name__)

IMAGE_WARNING = "Claude Code CLI does not support image inputs. Images will be ignored."

_ASSISTANT_PREFIX = "Assistant:"
_TOOL_PREFIX = "Tool Result"


@dataclass
class PromptText:
    """拍平后的 prompt。

    Attributes:
        prompt: 通过 stdin 传递的 prompt
        system_prompt: 系统提示词
        warnings: 转换过程中的警告
    """

    prompt: str
    system_prompt: str | None = None
    warnings: list[str] = field(default_factory=list)


def _text_of(content: Any, warnings: list[str]) -> str:
    """提取消息中的文本部分，多段以换行连接。"""
    if isinstance(content, str):
        return content
    if not isinstance(content, Iterable):
        return ""

    texts = []
    for part in content:
        if not isinstance(part, Mapping):
            continue
        part_type = part.get("type")
        if part_type == "text":
            texts.append(str(part.get("text", "")))
        elif part_type == "image" and IMAGE_WARNING not in warnings:
            logger.warning(IMAGE_WARNING)
            warnings.append(IMAGE_WARNING)
    return "\n".join(texts)


def _has_tool_calls(content: Any) -> bool:
    if isinstance(content, str) or not isinstance(content, Iterable):
        return False
    return any(
        isinstance(part, Mapping) and part.get("type") in ("tool-call", "tool_use")
        for part in content
    )


def _tool_results(content: Any) -> list[str]:
    if isinstance(content, Mapping):
        content = [content]
    if isinstance(content, str) or not isinstance(content, Iterable):
        return []

    lines = []
    for part in content:
        if not isinstance(part, Mapping):
            continue
        name = part.get("toolName") or part.get("tool_name") or "unknown"
        result = part.get("result", part.get("content"))
        lines.append(f"{_TOOL_PREFIX} ({name}): {json.dumps(result, ensure_ascii=False, default=str)}")
    return lines


def to_prompt_text(messages: Iterable[Mapping[str, Any]]) -> PromptText:
    """将对话消息拍平为 CLI 可接受的 prompt。

    Args:
        messages: 消息列表，每条包含 role 与 content

    Returns:
        PromptText
    """
    parts: list[str] = []
    system_prompt: str | None = None
    warnings: list[str] = []

    for message in messages:
        role = message.get("role")
        content = message.get("content")

        if role == "system":
            system_prompt = _text_of(content, warnings)

        elif role == "user":
            text = _text_of(content, warnings)
            if text:
                parts.append(text)

        elif role == "assistant":
            text = _text_of(content, warnings)
            if text:
                parts.append(f"{_ASSISTANT_PREFIX} {text}")
            if _has_tool_calls(content):
                parts.append(f"{_ASSISTANT_PREFIX} [Tool calls made]")

        elif role == "tool":
            parts.extend(_tool_results(content))

        else:
            logger.debug(f"Ignoring message with role={role!r}")

    if not parts:
        return PromptText(prompt="", system_prompt=system_prompt, warnings=warnings)
    if len(parts) == 1:
        return PromptText(prompt=parts[0], system_prompt=system_prompt, warnings=warnings)

    formatted = [
        part if part.startswith((_ASSISTANT_PREFIX, _TOOL_PREFIX)) else f"Human: {part}"
        for part in parts
    ]
    return PromptText(prompt="\n\n".join(formatted), system_prompt=system_prompt, warnings=warnings)
