"""调用器模块。

claude-code-provider invokers v0.1.0

组合槽位池、进程生命周期和协议适配器，执行单次生成请求。
"""

from __future__ import annotations

from .claude import ClaudeInvoker
from .collector import ResultCollector
from .types import (
    DEFAULT_TIMEOUT,
    ClaudeCodeSettings,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    McpSseServer,
    McpStdioServer,
    PermissionMode,
)

__all__ = [
    "ClaudeInvoker",
    "ResultCollector",
    "ClaudeCodeSettings",
    "GenerationMode",
    "GenerationRequest",
    "GenerationResult",
    "PermissionMode",
    "McpStdioServer",
    "McpSseServer",
    "DEFAULT_TIMEOUT",
]
