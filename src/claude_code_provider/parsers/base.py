"""基础类型和枚举定义。

claude-code-provider parsers v0.1.0

本模块定义了流式协议适配器的基础类型，包括：
- 生成事件类型
- 结束原因
- stream-json 记录类型（封闭集合）
- 非法记录处理策略
"""

from __future__ import annotations

from enum import Enum
from typing import Final

__all__ = [
    "EventType",
    "FinishReason",
    "RecordType",
    "MalformedRecordPolicy",
    "TERMINAL_RECORD_TYPES",
]


class EventType(str, Enum):
    """对外生成事件类型。

    顺序约束：
    - tool-call-start -> tool-call-delta* -> tool-call-end -> tool-result?
    - finish / error 恰好一个，且永远是最后一个
    """

    SESSION_INFO = "session-info"
    TEXT_DELTA = "text-delta"
    TOOL_CALL_START = "tool-call-start"
    TOOL_CALL_DELTA = "tool-call-delta"
    TOOL_CALL_END = "tool-call-end"
    TOOL_RESULT = "tool-result"
    USAGE = "usage"
    FINISH = "finish"
    ERROR = "error"


class FinishReason(str, Enum):
    """结束原因。"""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"

    @classmethod
    def from_result_subtype(cls, subtype: str | None) -> "FinishReason":
        """从 result 记录的 subtype 映射结束原因。

        - success -> stop
        - error_max_turns -> length（达到最大轮数，输出被截断）
        - error_during_execution -> error
        - 其他 -> stop
        """
        if subtype == "error_max_turns":
            return cls.LENGTH
        if subtype == "error_during_execution":
            return cls.ERROR
        return cls.STOP

    @classmethod
    def from_string(cls, value: str | None) -> "FinishReason":
        """解析 compact done 记录中的 finish_reason，无效值返回 STOP。"""
        if not value:
            return cls.STOP
        value = value.lower().strip().replace("_", "-")
        for reason in cls:
            if reason.value == value:
                return reason
        return cls.STOP


class RecordType(str, Enum):
    """stdout 上允许出现的记录类型。"""

    # Claude Code 原生 stream-json
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    RESULT = "result"
    ERROR = "error"
    STREAM_EVENT = "stream_event"

    # 精简格式
    SESSION = "session"
    TEXT = "text"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"
    TOOL_RESULT = "tool_result"
    USAGE = "usage"
    DONE = "done"


# 结束事件流的记录类型
TERMINAL_RECORD_TYPES: Final[frozenset[RecordType]] = frozenset({
    RecordType.RESULT,
    RecordType.ERROR,
    RecordType.DONE,
})


class MalformedRecordPolicy(str, Enum):
    """非法记录（非 JSON、非对象、缺少 type）的处理策略。

    - FAIL: 产出终止 ProtocolError（默认）
    - SKIP: 记录警告后丢弃该行
    """

    FAIL = "fail"
    SKIP = "skip"

    @classmethod
    def from_string(cls, value: str | None) -> "MalformedRecordPolicy":
        """从字符串解析策略，无效值返回 FAIL。"""
        if not value:
            return cls.FAIL
        value = value.lower().strip()
        for policy in cls:
            if policy.value == value:
                return policy
        return cls.FAIL
