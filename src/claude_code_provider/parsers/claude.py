"""Claude Code CLI stream-json 解析器。

claude-code-provider parsers v0.1.0

将 Claude Code CLI 的 stdout 记录流解析为生成事件。

原生记录类型 (--output-format stream-json --verbose):
- system/init: 会话初始化（session_id, model, tools）
- assistant: 助手消息，content[] 可包含 thinking/text/tool_use
- user: 工具结果，content[] 包含 tool_result
- stream_event: 增量消息 (--include-partial-messages)
- result: 会话结束，包含用量、费用和耗时
- error: 错误

精简记录类型:
- session / text / tool_call_start / tool_call_delta / tool_call_end
- tool_result / usage / done

终止记录（result / error / done）不会立即产出，而是保存为 pending，
由调用方在进程退出码确定后决定最终产出 finish 还是 error。
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from ..errors import ClaudeCodeError, ClaudeCodeProtocolError, classify_error_record, protocol_error
from .base import TERMINAL_RECORD_TYPES, FinishReason, MalformedRecordPolicy, RecordType
from .events import (
    FinishEvent,
    SessionInfoEvent,
    StreamEvent,
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
    "ClaudeStreamParser",
]

logger = logging.getLogger(__name__)


@dataclass
class _OpenToolCall:
    """进行中的工具调用。"""

    tool_name: str
    args_parts: list[str] = field(default_factory=list)


@dataclass
class _StreamBlock:
    """stream_event 中按 index 跟踪的内容块。"""

    block_type: str
    tool_call_id: str | None = None


def _parse_args(text: str) -> Any:
    """解析拼接后的工具参数，失败时返回原始字符串。"""
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


class ClaudeStreamParser:
    """Claude Code CLI 记录流解析器。

    状态只有两部分：
    - 累计用量（usage 记录是增量；终止记录中的用量为最终值）
    - 工具调用 ID 跟踪（进行中 / 已结束），用于检测协议违规

    Example:
        parser = ClaudeStreamParser()
        while chunk := await handle.read_chunk():
            for event in parser.feed(chunk):
                yield event
        for event in parser.end_of_input():
            yield event
        terminal = parser.terminal_finish or parser.terminal_error
    """

    def __init__(
        self,
        *,
        malformed_policy: MalformedRecordPolicy = MalformedRecordPolicy.FAIL,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.malformed_policy = malformed_policy
        self.session_id: str | None = None
        self.model: str | None = None

        self.terminal_finish: FinishEvent | None = None
        self.terminal_error: ClaudeCodeError | None = None

        self.records_parsed = 0
        self.skipped_lines = 0
        self.ignored_after_terminal = 0
        self.terminal_record: RecordType | None = None

        self._buffer = LineBuffer(max_line_bytes)
        self._usage = Usage()
        self._open_calls: dict[str, _OpenToolCall] = {}
        self._completed_calls: dict[str, str] = {}  # tool_call_id -> tool_name
        self._blocks: dict[int, _StreamBlock] = {}
        self._streamed_messages: set[str] = set()
        self._partial_seen = False

        self._handlers: dict[RecordType, Callable[[dict[str, Any]], list[StreamEvent]]] = {
            RecordType.SYSTEM: self._parse_system,
            RecordType.ASSISTANT: self._parse_assistant,
            RecordType.USER: self._parse_user,
            RecordType.RESULT: self._parse_result,
            RecordType.ERROR: self._parse_error,
            RecordType.STREAM_EVENT: self._parse_stream_event,
            RecordType.SESSION: self._parse_session,
            RecordType.TEXT: self._parse_text,
            RecordType.TOOL_CALL_START: self._parse_tool_call_start,
            RecordType.TOOL_CALL_DELTA: self._parse_tool_call_delta,
            RecordType.TOOL_CALL_END: self._parse_tool_call_end,
            RecordType.TOOL_RESULT: self._parse_tool_result,
            RecordType.USAGE: self._parse_usage,
            RecordType.DONE: self._parse_done,
        }

    # -------------------------------------------------------------------------
    # 公共接口
    # -------------------------------------------------------------------------

    @property
    def has_terminal(self) -> bool:
        return self.terminal_finish is not None or self.terminal_error is not None

    @property
    def usage(self) -> Usage:
        """当前累计用量。"""
        return self._usage

    @property
    def open_tool_calls(self) -> list[str]:
        return list(self._open_calls)

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        """输入 stdout 字节块，逐个产出解析出的事件。

        协议错误在出错的那一行抛出，之前各行的事件已经产出。

        Raises:
            ClaudeCodeProtocolError: 协议违规（FAIL 策略下也包括非法记录）
        """
        try:
            lines = self._buffer.feed(chunk)
        except LineTooLongError as e:
            raise protocol_error(str(e), session_id=self.session_id) from e

        for line in lines:
            yield from self.parse_line(line)

    def end_of_input(self) -> list[StreamEvent]:
        """stdout 到达 EOF：解析残留的最后一行（没有换行结尾）。"""
        tail = self._buffer.flush()
        if tail is None:
            return []
        return self.parse_line(tail)

    def parse_line(self, line: str) -> list[StreamEvent]:
        """解析单行记录。

        Args:
            line: 一行原始文本（不含换行）

        Returns:
            事件列表（终止记录返回空列表，结果保存为 pending）

        Raises:
            ClaudeCodeProtocolError: 协议违规
        """
        if not line.strip():
            return []

        if self.has_terminal:
            self.ignored_after_terminal += 1
            logger.warning(f"Ignoring record after terminal record: {line[:200]}")
            return []

        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            return self._malformed(line, f"Invalid JSON record: {e.msg}")

        if not isinstance(data, dict):
            return self._malformed(line, "Record is not a JSON object")

        record_type = data.get("type")
        if not isinstance(record_type, str):
            return self._malformed(line, "Record has no string 'type' field")

        try:
            rtype = RecordType(record_type)
        except ValueError:
            raise protocol_error(
                f"Unknown record type: {record_type}",
                line=line,
                session_id=self.session_id,
            ) from None

        self.records_parsed += 1
        session_id = data.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.session_id = session_id

        try:
            events = self._handlers[rtype](data)
        except ClaudeCodeProtocolError:
            raise
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            # 记录结构与类型声明不符
            raise protocol_error(
                f"Malformed {record_type} record: {e}",
                line=line,
                session_id=self.session_id,
            ) from e

        if rtype in TERMINAL_RECORD_TYPES:
            self.terminal_record = rtype
            logger.debug(f"Terminal record {record_type} session={self.session_id}")
        return events

    def _malformed(self, line: str, message: str) -> list[StreamEvent]:
        if self.malformed_policy is MalformedRecordPolicy.SKIP:
            self.skipped_lines += 1
            logger.warning(f"Skipping malformed record ({message}): {line[:200]}")
            return []
        raise protocol_error(message, line=line, session_id=self.session_id)

    def _violation(self, message: str) -> ClaudeCodeProtocolError:
        return protocol_error(message, session_id=self.session_id)

    # -------------------------------------------------------------------------
    # 工具调用跟踪
    # -------------------------------------------------------------------------

    def _start_call(self, tool_call_id: Any, tool_name: Any) -> ToolCallStartEvent:
        if not isinstance(tool_call_id, str) or not tool_call_id:
            raise self._violation("Tool call start without id")
        if tool_call_id in self._open_calls or tool_call_id in self._completed_calls:
            raise self._violation(f"Duplicate tool call start: {tool_call_id}")
        name = tool_name if isinstance(tool_name, str) and tool_name else "unknown"
        self._open_calls[tool_call_id] = _OpenToolCall(tool_name=name)
        return ToolCallStartEvent(tool_call_id=tool_call_id, tool_name=name)

    def _delta_call(self, tool_call_id: Any, delta: Any) -> ToolCallDeltaEvent:
        call = self._open_calls.get(tool_call_id) if isinstance(tool_call_id, str) else None
        if call is None:
            raise self._violation(f"Tool call delta without matching start: {tool_call_id}")
        text = delta if isinstance(delta, str) else _dumps(delta)
        call.args_parts.append(text)
        return ToolCallDeltaEvent(tool_call_id=tool_call_id, args_delta=text)

    def _end_call(self, tool_call_id: Any, tool_input: Any = None) -> ToolCallEndEvent:
        call = self._open_calls.pop(tool_call_id, None) if isinstance(tool_call_id, str) else None
        if call is None:
            raise self._violation(f"Tool call end without matching start: {tool_call_id}")
        if tool_input is None:
            tool_input = _parse_args("".join(call.args_parts))
        self._completed_calls[tool_call_id] = call.tool_name
        return ToolCallEndEvent(
            tool_call_id=tool_call_id,
            tool_name=call.tool_name,
            input=tool_input,
        )

    def _result_for(self, tool_call_id: Any, result: Any, is_error: bool) -> ToolResultEvent:
        if not isinstance(tool_call_id, str) or tool_call_id not in self._completed_calls:
            if isinstance(tool_call_id, str) and tool_call_id in self._open_calls:
                raise self._violation(f"Tool result before tool call end: {tool_call_id}")
            raise self._violation(f"Tool result for unknown tool call: {tool_call_id}")
        return ToolResultEvent(
            tool_call_id=tool_call_id,
            tool_name=self._completed_calls[tool_call_id],
            result=result,
            is_error=bool(is_error),
        )

    def _add_usage(self, usage: Usage) -> None:
        self._usage = self._usage + usage

    def _final_usage(self, record_usage: Usage | None) -> Usage:
        """终止记录携带用量时以其为准，否则使用累计值。"""
        if record_usage is not None:
            return record_usage
        return self._usage

    # -------------------------------------------------------------------------
    # 原生记录
    # -------------------------------------------------------------------------

    def _parse_system(self, data: dict[str, Any]) -> list[StreamEvent]:
        subtype = data.get("subtype", "")
        if subtype != "init":
            logger.debug(f"Ignoring system record subtype={subtype}")
            return []

        self.model = data.get("model")
        if not self.session_id:
            raise self._violation("system/init record without session_id")
        tools = [t for t in data.get("tools") or [] if isinstance(t, str)]
        return [SessionInfoEvent(
            session_id=self.session_id,
            model=self.model,
            tools=tools,
            raw=data,
        )]

    def _parse_assistant(self, data: dict[str, Any]) -> list[StreamEvent]:
        """解析 assistant 消息。

        一个 assistant 消息的 content[] 可能包含多个内容块：
        - thinking: 思考过程（不转发）
        - text: 文本输出
        - tool_use: 工具调用，展开为 start -> delta -> end

        已通过 stream_event 增量产出的消息只做 ID 登记，不重复产出。
        """
        message = data.get("message") or {}
        message_id = message.get("id")
        if isinstance(message_id, str):
            streamed = message_id in self._streamed_messages
        else:
            streamed = self._partial_seen

        events: list[StreamEvent] = []
        for content in message.get("content") or []:
            content_type = content.get("type", "")

            if content_type == "text":
                text = content.get("text", "")
                if text and not streamed:
                    events.append(TextDeltaEvent(text=text))

            elif content_type == "tool_use":
                tool_id = content.get("id")
                if streamed and (tool_id in self._completed_calls or tool_id in self._open_calls):
                    continue
                tool_input = content.get("input", {})
                events.append(self._start_call(tool_id, content.get("name")))
                events.append(self._delta_call(tool_id, _dumps(tool_input)))
                events.append(self._end_call(tool_id, tool_input))

            elif content_type == "thinking":
                logger.debug("Skipping thinking block")

        self._partial_seen = False
        return events

    def _parse_user(self, data: dict[str, Any]) -> list[StreamEvent]:
        """解析 user 消息（工具结果）。"""
        message = data.get("message") or {}
        content_list = message.get("content")
        if not isinstance(content_list, list):
            return []

        events: list[StreamEvent] = []
        for content in content_list:
            if content.get("type") != "tool_result":
                continue
            events.append(self._result_for(
                content.get("tool_use_id"),
                content.get("content"),
                content.get("is_error", False),
            ))
        return events

    def _parse_stream_event(self, data: dict[str, Any]) -> list[StreamEvent]:
        """解析增量消息事件 (--include-partial-messages)。"""
        event = data.get("event") or {}
        event_type = event.get("type", "")

        if event_type == "message_start":
            message_id = (event.get("message") or {}).get("id")
            if isinstance(message_id, str):
                self._streamed_messages.add(message_id)
            self._blocks = {}
            self._partial_seen = True
            return []

        index = event.get("index", 0)

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            block_type = block.get("type", "")
            self._partial_seen = True
            if block_type == "tool_use":
                tool_id = block.get("id")
                self._blocks[index] = _StreamBlock(block_type, tool_id)
                return [self._start_call(tool_id, block.get("name"))]
            self._blocks[index] = _StreamBlock(block_type)
            return []

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type", "")
            if delta_type == "text_delta":
                text = delta.get("text", "")
                return [TextDeltaEvent(text=text)] if text else []
            if delta_type == "input_json_delta":
                block = self._blocks.get(index)
                if block is None or block.tool_call_id is None:
                    raise self._violation(f"input_json_delta for unknown content block {index}")
                partial = delta.get("partial_json", "")
                return [self._delta_call(block.tool_call_id, partial)] if partial else []
            return []

        if event_type == "content_block_stop":
            block = self._blocks.pop(index, None)
            if block is not None and block.tool_call_id is not None:
                return [self._end_call(block.tool_call_id)]
            return []

        # message_delta / message_stop 不携带需要转发的内容
        return []

    def _parse_result(self, data: dict[str, Any]) -> list[StreamEvent]:
        """解析 result 记录（终止）。"""
        subtype = data.get("subtype")
        cost = data.get("total_cost_usd")
        cost = float(cost) if isinstance(cost, (int, float)) and not isinstance(cost, bool) else None
        record_usage = Usage.from_record(data["usage"], cost_usd=cost) if isinstance(data.get("usage"), dict) else None

        if data.get("is_error") and subtype != "error_max_turns":
            result_text = data.get("result")
            message = result_text if isinstance(result_text, str) and result_text else (
                f"Claude Code execution failed ({subtype or 'unknown'})"
            )
            self.terminal_error = classify_error_record(message, code=subtype, session_id=self.session_id)
            return []

        usage = self._final_usage(record_usage)
        self.terminal_finish = FinishEvent(
            finish_reason=FinishReason.from_result_subtype(subtype),
            usage=usage,
            session_id=self.session_id,
            cost_usd=cost if cost is not None else usage.cost_usd,
            duration_ms=data.get("duration_ms"),
            num_turns=data.get("num_turns"),
            raw=data,
        )
        return []

    def _parse_error(self, data: dict[str, Any]) -> list[StreamEvent]:
        """解析 error 记录（终止）。"""
        error = data.get("error")
        code = None
        if isinstance(error, dict):
            message = error.get("message") or data.get("message")
            code = error.get("code") or error.get("type")
        else:
            message = error if isinstance(error, str) else data.get("message")
        if not isinstance(message, str) or not message:
            message = "Claude Code reported an error"
        self.terminal_error = classify_error_record(
            message,
            code=str(code) if code is not None else None,
            session_id=self.session_id,
        )
        return []

    # -------------------------------------------------------------------------
    # 精简记录
    # -------------------------------------------------------------------------

    def _parse_session(self, data: dict[str, Any]) -> list[StreamEvent]:
        if not self.session_id:
            raise self._violation("session record without session_id")
        self.model = data.get("model") or self.model
        return [SessionInfoEvent(session_id=self.session_id, model=self.model, raw=data)]

    def _parse_text(self, data: dict[str, Any]) -> list[StreamEvent]:
        text = data.get("text")
        if not isinstance(text, str):
            raise self._violation("text record without string 'text'")
        return [TextDeltaEvent(text=text)] if text else []

    def _parse_tool_call_start(self, data: dict[str, Any]) -> list[StreamEvent]:
        return [self._start_call(
            data.get("tool_call_id", data.get("id")),
            data.get("tool_name", data.get("name")),
        )]

    def _parse_tool_call_delta(self, data: dict[str, Any]) -> list[StreamEvent]:
        return [self._delta_call(
            data.get("tool_call_id", data.get("id")),
            data.get("args_delta", data.get("delta", "")),
        )]

    def _parse_tool_call_end(self, data: dict[str, Any]) -> list[StreamEvent]:
        return [self._end_call(
            data.get("tool_call_id", data.get("id")),
            data.get("input"),
        )]

    def _parse_tool_result(self, data: dict[str, Any]) -> list[StreamEvent]:
        return [self._result_for(
            data.get("tool_call_id", data.get("id")),
            data.get("result"),
            data.get("is_error", False),
        )]

    def _parse_usage(self, data: dict[str, Any]) -> list[StreamEvent]:
        payload = data.get("usage")
        usage = Usage.from_record(payload if isinstance(payload, dict) else data)
        self._add_usage(usage)
        return [UsageEvent(usage=usage)]

    def _parse_done(self, data: dict[str, Any]) -> list[StreamEvent]:
        payload = data.get("usage")
        record_usage = Usage.from_record(payload) if isinstance(payload, dict) else None
        usage = self._final_usage(record_usage)
        self.terminal_finish = FinishEvent(
            finish_reason=FinishReason.from_string(data.get("finish_reason")),
            usage=usage,
            session_id=self.session_id,
            cost_usd=usage.cost_usd,
            duration_ms=data.get("duration_ms"),
            raw=data,
        )
        return []
