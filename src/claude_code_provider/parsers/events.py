"""生成事件模型定义。

claude-code-provider parsers v0.1.0

将 Claude Code CLI 的 stream-json 记录转换为调用方消费的标准事件。
设计原则：
1. 事件不可变 - 一旦产出就不会被修改
2. 向前兼容 - 使用 extra='ignore' 忽略未知字段
3. 以 type 字段区分事件类型
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ClaudeCodeError, ErrorKind, ErrorMetadata, make_error
from .base import EventType, FinishReason

__all__ = [
    # 用量
    "Usage",
    # 基类
    "StreamEventBase",
    # 具体事件
    "SessionInfoEvent",
    "TextDeltaEvent",
    "ToolCallStartEvent",
    "ToolCallDeltaEvent",
    "ToolCallEndEvent",
    "ToolResultEvent",
    "UsageEvent",
    "FinishEvent",
    "ErrorEvent",
    # 联合类型
    "StreamEvent",
    "TerminalEvent",
]


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


class Usage(BaseModel):
    """Token 用量。

    prompt_tokens 包含缓存 token（cache_creation + cache_read），
    与 Claude API 的计费口径一致。

    Attributes:
        input_tokens: 非缓存输入 token
        output_tokens: 输出 token
        cache_creation_input_tokens: 缓存写入 token
        cache_read_input_tokens: 缓存读取 token
        total_tokens: 记录中显式给出的总数（可选）
        cost_usd: 费用（美元）
        raw: 原始用量记录
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    total_tokens: int | None = None
    cost_usd: float | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def prompt_tokens(self) -> int:
        return self.input_tokens + self.cache_creation_input_tokens + self.cache_read_input_tokens

    @property
    def completion_tokens(self) -> int:
        return self.output_tokens

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_record(cls, data: dict[str, Any] | None, cost_usd: float | None = None) -> "Usage":
        """从 CLI 用量记录构造。

        兼容两种命名：
        - 原生: input_tokens / output_tokens / cache_*_input_tokens
        - 精简: prompt_tokens / completion_tokens / tokens / total_tokens
        """
        data = data or {}
        total = data.get("total_tokens", data.get("tokens"))
        cost = cost_usd
        if cost is None:
            raw_cost = data.get("cost_usd", data.get("total_cost_usd"))
            if isinstance(raw_cost, (int, float)) and not isinstance(raw_cost, bool):
                cost = float(raw_cost)
        return cls(
            input_tokens=_int(data.get("input_tokens", data.get("prompt_tokens"))),
            output_tokens=_int(data.get("output_tokens", data.get("completion_tokens"))),
            cache_creation_input_tokens=_int(data.get("cache_creation_input_tokens")),
            cache_read_input_tokens=_int(data.get("cache_read_input_tokens")),
            total_tokens=_int(total) if total is not None else None,
            cost_usd=cost,
            raw=dict(data),
        )

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        if self.total_tokens is None and other.total_tokens is None:
            total = None
        else:
            total = self.total + other.total
        if self.cost_usd is None and other.cost_usd is None:
            cost = None
        else:
            cost = (self.cost_usd or 0.0) + (other.cost_usd or 0.0)
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens + other.cache_creation_input_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            total_tokens=total,
            cost_usd=cost,
        )

    def to_dict(self) -> dict[str, Any]:
        """转换为调用方友好的用量字典。"""
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total,
            "cost_usd": self.cost_usd,
        }


class StreamEventBase(BaseModel):
    """所有生成事件的基类。

    Attributes:
        type: 事件类型
        timestamp: Unix 时间戳（秒）
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: EventType
    timestamp: float = Field(default_factory=time.time)


class SessionInfoEvent(StreamEventBase):
    """会话信息（system/init 或 session 记录）。"""

    type: Literal[EventType.SESSION_INFO] = EventType.SESSION_INFO
    session_id: str
    model: str | None = None
    tools: list[str] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)


class TextDeltaEvent(StreamEventBase):
    """增量文本。"""

    type: Literal[EventType.TEXT_DELTA] = EventType.TEXT_DELTA
    text: str


class ToolCallStartEvent(StreamEventBase):
    """工具调用开始。"""

    type: Literal[EventType.TOOL_CALL_START] = EventType.TOOL_CALL_START
    tool_call_id: str
    tool_name: str


class ToolCallDeltaEvent(StreamEventBase):
    """工具调用参数增量（JSON 片段）。"""

    type: Literal[EventType.TOOL_CALL_DELTA] = EventType.TOOL_CALL_DELTA
    tool_call_id: str
    args_delta: str


class ToolCallEndEvent(StreamEventBase):
    """工具调用结束。input 为完整参数（能解析时）。"""

    type: Literal[EventType.TOOL_CALL_END] = EventType.TOOL_CALL_END
    tool_call_id: str
    tool_name: str
    input: Any = None


class ToolResultEvent(StreamEventBase):
    """工具执行结果（由 CLI 内部执行，仅转发）。"""

    type: Literal[EventType.TOOL_RESULT] = EventType.TOOL_RESULT
    tool_call_id: str
    tool_name: str | None = None
    result: Any = None
    is_error: bool = False


class UsageEvent(StreamEventBase):
    """增量用量。"""

    type: Literal[EventType.USAGE] = EventType.USAGE
    usage: Usage


class FinishEvent(StreamEventBase):
    """正常结束（终止事件）。

    Attributes:
        finish_reason: 结束原因
        usage: 最终用量
        session_id: 会话 ID
        cost_usd: 费用（美元）
        duration_ms: CLI 报告的耗时
        num_turns: CLI 报告的轮数
    """

    type: Literal[EventType.FINISH] = EventType.FINISH
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = Field(default_factory=Usage)
    session_id: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    num_turns: int | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(StreamEventBase):
    """错误结束（终止事件）。"""

    type: Literal[EventType.ERROR] = EventType.ERROR
    kind: ErrorKind
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_retryable: bool = False

    @classmethod
    def from_exception(cls, exc: ClaudeCodeError) -> "ErrorEvent":
        return cls(
            kind=exc.kind,
            message=exc.message,
            metadata=exc.metadata.to_dict(),
            is_retryable=exc.is_retryable,
        )

    def to_exception(self) -> ClaudeCodeError:
        """还原为对应分类的异常。"""
        known = set(ErrorMetadata.__dataclass_fields__)
        metadata = ErrorMetadata(**{k: v for k, v in self.metadata.items() if k in known})
        return make_error(
            self.kind,
            self.message,
            metadata=metadata,
            is_retryable=self.is_retryable,
        )


# 联合类型
StreamEvent = (
    SessionInfoEvent
    | TextDeltaEvent
    | ToolCallStartEvent
    | ToolCallDeltaEvent
    | ToolCallEndEvent
    | ToolResultEvent
    | UsageEvent
    | FinishEvent
    | ErrorEvent
)

TerminalEvent = FinishEvent | ErrorEvent
