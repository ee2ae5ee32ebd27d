"""结果收集器模块。

claude-code-provider invokers v0.1.0

将事件流归约为非流式的 GenerationResult。
非流式生成就是"把流读完"：本模块不持有任何进程状态。

职责：
- 按到达顺序拼接 text-delta
- 提取 session_id / model
- 收集工具调用与结果
- 记录终止事件（finish 或 error）
"""

from __future__ import annotations

import logging

from ..errors import ClaudeCodeError, protocol_error
from ..parsers.events import (
    ErrorEvent,
    FinishEvent,
    SessionInfoEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEndEvent,
    ToolResultEvent,
)
from .types import GenerationResult

__all__ = [
    "ResultCollector",
]

logger = logging.getLogger(__name__)


class ResultCollector:
    """事件流归约器。

    Example:
        collector = ResultCollector()
        async for event in invoker.stream(request):
            collector.process_event(event)
        result = collector.get_result()  # 失败时抛出分类异常
    """

    def __init__(self, warnings: list[str] | None = None) -> None:
        self._text_parts: list[str] = []
        self._session_id: str | None = None
        self._model: str | None = None
        self._tool_calls: list[ToolCallEndEvent] = []
        self._tool_results: list[ToolResultEvent] = []
        self._warnings: list[str] = list(warnings or [])
        self._finish: FinishEvent | None = None
        self._error: ErrorEvent | None = None
        self.event_count = 0

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def finished(self) -> bool:
        return self._finish is not None or self._error is not None

    @property
    def error(self) -> ErrorEvent | None:
        return self._error

    def add_warning(self, warning: str) -> None:
        self._warnings.append(warning)

    def process_event(self, event: StreamEvent) -> None:
        """处理单个事件。终止事件之后的事件被忽略。"""
        if self.finished:
            logger.warning(f"Ignoring event after terminal event: {event.type.value}")
            return
        self.event_count += 1

        if isinstance(event, TextDeltaEvent):
            self._text_parts.append(event.text)
        elif isinstance(event, SessionInfoEvent):
            self._session_id = event.session_id
            self._model = event.model or self._model
        elif isinstance(event, ToolCallEndEvent):
            self._tool_calls.append(event)
        elif isinstance(event, ToolResultEvent):
            self._tool_results.append(event)
        elif isinstance(event, FinishEvent):
            self._finish = event
            if event.session_id:
                self._session_id = event.session_id
        elif isinstance(event, ErrorEvent):
            self._error = event

    def get_result(self) -> GenerationResult:
        """返回归约结果。

        Raises:
            ClaudeCodeError: 流以 error 事件结束，或流没有终止事件
        """
        if self._error is not None:
            raise self._error.to_exception()
        if self._finish is None:
            raise protocol_error("Stream ended without a terminal event", session_id=self._session_id)

        finish = self._finish
        return GenerationResult(
            text=self.text,
            finish_reason=finish.finish_reason,
            usage=finish.usage,
            session_id=self._session_id,
            model=self._model,
            tool_calls=list(self._tool_calls),
            tool_results=list(self._tool_results),
            warnings=list(self._warnings),
            cost_usd=finish.cost_usd,
            duration_ms=finish.duration_ms,
        )

    def get_error(self) -> ClaudeCodeError | None:
        return self._error.to_exception() if self._error is not None else None
