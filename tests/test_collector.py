"""ResultCollector 单元测试。

测试结果收集器的核心功能：
- 文本拼接
- session_id / model 提取
- 工具调用与结果收集
- 终止事件与错误还原
"""

from __future__ import annotations

import pytest

from claude_code_provider.errors import (
    ClaudeCodeProtocolError,
    ClaudeCodeTimeoutError,
    timeout_error,
)
from claude_code_provider.invokers.collector import ResultCollector
from claude_code_provider.parsers import (
    ErrorEvent,
    FinishEvent,
    FinishReason,
    SessionInfoEvent,
    TextDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    ToolResultEvent,
    Usage,
)


class TestResultCollectorBasic:
    """基本功能测试。"""

    def test_init(self):
        """初始化状态。"""
        collector = ResultCollector()
        assert collector.text == ""
        assert not collector.finished
        assert collector.event_count == 0
        assert collector.get_error() is None

    def test_text_concatenated_in_order(self):
        """文本按到达顺序拼接。"""
        collector = ResultCollector()
        for part in ("Hel", "lo", " world"):
            collector.process_event(TextDeltaEvent(text=part))
        collector.process_event(FinishEvent())

        result = collector.get_result()
        assert result.text == "Hello world"
        assert result.finish_reason is FinishReason.STOP
        assert collector.event_count == 4

    def test_usage_and_cost_from_finish(self):
        collector = ResultCollector()
        usage = Usage(input_tokens=10, output_tokens=5)
        collector.process_event(FinishEvent(usage=usage, cost_usd=0.01, duration_ms=1200))

        result = collector.get_result()
        assert result.usage.total == 15
        assert result.cost_usd == 0.01
        assert result.duration_ms == 1200


class TestSessionTracking:
    """session_id 与模型提取。"""

    def test_session_from_session_info(self):
        collector = ResultCollector()
        collector.process_event(SessionInfoEvent(session_id="s1", model="claude-sonnet"))
        collector.process_event(FinishEvent())

        result = collector.get_result()
        assert result.session_id == "s1"
        assert result.model == "claude-sonnet"

    def test_finish_session_wins(self):
        """finish 事件中的 session_id 覆盖之前的值。"""
        collector = ResultCollector()
        collector.process_event(SessionInfoEvent(session_id="s1"))
        collector.process_event(FinishEvent(session_id="s2"))
        assert collector.get_result().session_id == "s2"

    def test_model_kept_when_later_session_has_none(self):
        collector = ResultCollector()
        collector.process_event(SessionInfoEvent(session_id="s1", model="opus"))
        collector.process_event(SessionInfoEvent(session_id="s1"))
        collector.process_event(FinishEvent())
        assert collector.get_result().model == "opus"


class TestToolCollection:
    """工具调用与结果。"""

    def test_tool_calls_and_results(self):
        collector = ResultCollector()
        collector.process_event(ToolCallStartEvent(tool_call_id="t1", tool_name="Read"))
        collector.process_event(ToolCallEndEvent(tool_call_id="t1", tool_name="Read", input={"path": "a"}))
        collector.process_event(ToolResultEvent(tool_call_id="t1", tool_name="Read", result="contents"))
        collector.process_event(FinishEvent(finish_reason=FinishReason.TOOL_CALLS))

        result = collector.get_result()
        assert [c.tool_call_id for c in result.tool_calls] == ["t1"]
        assert result.tool_results[0].result == "contents"

        data = result.to_dict()
        assert data["finish_reason"] == "tool-calls"
        assert data["tool_calls"] == [{"id": "t1", "name": "Read", "input": {"path": "a"}}]
        assert data["tool_results"][0]["is_error"] is False


class TestTerminal:
    """终止事件处理。"""

    def test_error_raises_classified(self):
        """error 事件结束的流，get_result 抛出对应分类的异常。"""
        collector = ResultCollector()
        collector.process_event(TextDeltaEvent(text="partial"))
        collector.process_event(ErrorEvent.from_exception(timeout_error(5.0)))

        assert collector.finished
        with pytest.raises(ClaudeCodeTimeoutError) as exc_info:
            collector.get_result()
        assert exc_info.value.is_retryable
        assert isinstance(collector.get_error(), ClaudeCodeTimeoutError)

    def test_missing_terminal_raises_protocol_error(self):
        collector = ResultCollector()
        collector.process_event(TextDeltaEvent(text="x"))
        with pytest.raises(ClaudeCodeProtocolError):
            collector.get_result()

    def test_events_after_terminal_ignored(self):
        collector = ResultCollector()
        collector.process_event(FinishEvent())
        collector.process_event(TextDeltaEvent(text="late"))

        assert collector.text == ""
        assert collector.event_count == 1


class TestWarnings:
    """警告传递。"""

    def test_initial_and_added_warnings(self):
        warnings = ["first"]
        collector = ResultCollector(warnings)
        collector.add_warning("second")
        collector.process_event(FinishEvent())

        result = collector.get_result()
        assert result.warnings == ["first", "second"]
        assert warnings == ["first"]
        assert result.to_dict()["warnings"] == ["first", "second"]

    def test_no_warnings_omitted_from_dict(self):
        collector = ResultCollector()
        collector.process_event(FinishEvent())
        assert "warnings" not in collector.get_result().to_dict()
