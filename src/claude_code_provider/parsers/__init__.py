"""流式协议适配器模块。

claude-code-provider parsers v0.1.0

将 Claude Code CLI 的 stream-json 输出解析为生成事件。

Example:
    from claude_code_provider.parsers import ClaudeStreamParser

    parser = ClaudeStreamParser()
    for chunk in stdout_chunks:
        for event in parser.feed(chunk):
            handle(event)
"""

from __future__ import annotations

from .base import (
    TERMINAL_RECORD_TYPES,
    EventType,
    FinishReason,
    MalformedRecordPolicy,
    RecordType,
)
from .claude import ClaudeStreamParser
from .events import (
    ErrorEvent,
    FinishEvent,
    SessionInfoEvent,
    StreamEvent,
    StreamEventBase,
    TerminalEvent,
    TextDeltaEvent,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    ToolResultEvent,
    Usage,
    UsageEvent,
)
from .line_buffer import DEFAULT_MAX_LINE_BYTES, LineBuffer, LineTooLongError

__all__ = [
    # 基础类型
    "EventType",
    "FinishReason",
    "RecordType",
    "MalformedRecordPolicy",
    "TERMINAL_RECORD_TYPES",
    # 事件
    "Usage",
    "StreamEventBase",
    "SessionInfoEvent",
    "TextDeltaEvent",
    "ToolCallStartEvent",
    "ToolCallDeltaEvent",
    "ToolCallEndEvent",
    "ToolResultEvent",
    "UsageEvent",
    "FinishEvent",
    "ErrorEvent",
    "StreamEvent",
    "TerminalEvent",
    # 行缓冲
    "LineBuffer",
    "LineTooLongError",
    "DEFAULT_MAX_LINE_BYTES",
    # 解析器
    "ClaudeStreamParser",
]
