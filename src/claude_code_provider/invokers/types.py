"""调用器类型定义。

claude-code-provider invokers v0.1.0

定义设置、请求、返回结构等类型。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ..parsers.base import FinishReason, MalformedRecordPolicy
from ..parsers.events import ToolCallEndEvent, ToolResultEvent, Usage
from ..runtime.cancellation import CancellationToken

__all__ = [
    "PermissionMode",
    "GenerationMode",
    "McpStdioServer",
    "McpSseServer",
    "McpServer",
    "ClaudeCodeSettings",
    "GenerationRequest",
    "GenerationResult",
    "DEFAULT_TIMEOUT",
]

# 单个请求的默认超时（秒）
DEFAULT_TIMEOUT = 120.0


class PermissionMode(str, Enum):
    """CLI 权限模式（--permission-mode）。

    - default: CLI 默认行为
    - acceptEdits: 自动接受文件编辑
    - bypassPermissions: 跳过所有权限确认
    - plan: 只规划不执行
    """

    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS_PERMISSIONS = "bypassPermissions"
    PLAN = "plan"


class GenerationMode(str, Enum):
    """生成模式。

    - regular: 普通文本
    - object-json: 要求输出 JSON，结束后从文本中提取
    """

    REGULAR = "regular"
    OBJECT_JSON = "object-json"


class McpStdioServer(BaseModel):
    """以子进程方式启动的 MCP 服务器。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["stdio"] = "stdio"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class McpSseServer(BaseModel):
    """通过 SSE 连接的远程 MCP 服务器。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["sse"]
    url: str
    headers: dict[str, str] = Field(default_factory=dict)


McpServer = Union[McpStdioServer, McpSseServer]


class ClaudeCodeSettings(BaseModel):
    """Claude Code CLI 设置。

    形状与类型由 pydantic 校验（未知字段直接拒绝），
    范围与语义检查见 validation.validate_settings。

    Attributes:
        cli_path: claude 可执行文件路径
        timeout: 单个请求超时（秒），None 表示不限制
        skip_permissions: 是否传递 --dangerously-skip-permissions
        permission_mode: 权限模式
        permission_prompt_tool_name: 处理权限确认的 MCP 工具（--permission-prompt-tool）
        allowed_tools: 允许的工具列表（--allowedTools）
        disallowed_tools: 禁用的工具列表（--disallowedTools）
        cwd: 工作目录
        env: 追加到子进程的环境变量
        resume: 恢复指定会话
        continue_session: 继续最近的会话（--continue）
        max_turns: 最大轮数
        max_thinking_tokens: 思考 token 上限（通过环境变量传递）
        mcp_servers: MCP 服务器配置，按名称索引（--mcp-config）
        custom_system_prompt: 覆盖默认系统提示词
        append_system_prompt: 追加到默认系统提示词末尾
        include_partial_messages: 请求增量消息（逐 token 输出）
        streaming_input: 以 stream-json 格式通过 stdin 发送 prompt
        malformed_record_policy: 非法记录处理策略
        verbose: 输出详细调试日志
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    cli_path: str = "claude"
    timeout: float | None = Field(default=DEFAULT_TIMEOUT, gt=0)
    skip_permissions: bool = True
    permission_mode: PermissionMode | None = None
    permission_prompt_tool_name: str | None = None
    allowed_tools: list[str] | None = None
    disallowed_tools: list[str] | None = None
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    resume: str | None = None
    continue_session: bool = False
    max_turns: int | None = Field(default=None, ge=1, le=100)
    max_thinking_tokens: int | None = Field(default=None, gt=0, le=100_000)
    mcp_servers: dict[str, McpServer] | None = None
    custom_system_prompt: str | None = None
    append_system_prompt: str | None = None
    include_partial_messages: bool = False
    streaming_input: bool = False
    malformed_record_policy: MalformedRecordPolicy = MalformedRecordPolicy.FAIL
    verbose: bool = False


@dataclass(frozen=True)
class GenerationRequest:
    """单次生成请求。提交后不可变。

    Attributes:
        prompt: prompt 文本（通过 stdin 传递）
        model: 模型 ID
        system_prompt: 系统提示词（来自 system 消息）
        settings: 已校验的设置
        cancellation: 取消令牌
        mode: 生成模式
    """

    prompt: str
    model: str = "sonnet"
    system_prompt: str | None = None
    settings: ClaudeCodeSettings = field(default_factory=ClaudeCodeSettings)
    cancellation: CancellationToken | None = None
    mode: GenerationMode = GenerationMode.REGULAR

    @property
    def cwd(self) -> Path | None:
        return Path(self.settings.cwd) if self.settings.cwd else None


@dataclass
class GenerationResult:
    """非流式生成结果，由事件流归约得到。

    Attributes:
        text: 所有 text-delta 按到达顺序拼接
        finish_reason: 结束原因
        usage: 最终用量
        session_id: 会话 ID，用于后续恢复
        model: CLI 报告的模型
        tool_calls: 已结束的工具调用
        tool_results: 工具结果
        warnings: 警告（设置、模型 ID、JSON 提取等）
        cost_usd: 费用（美元）
        duration_ms: CLI 报告的耗时
        object_text: object-json 模式下提取出的 JSON 文本
    """

    text: str = ""
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    session_id: str | None = None
    model: str | None = None
    tool_calls: list[ToolCallEndEvent] = field(default_factory=list)
    tool_results: list[ToolResultEvent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cost_usd: float | None = None
    duration_ms: int | None = None
    object_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为字典格式。"""
        result: dict[str, Any] = {
            "text": self.text,
            "finish_reason": self.finish_reason.value,
            "usage": self.usage.to_dict(),
            "session_id": self.session_id,
        }
        if self.model:
            result["model"] = self.model
        if self.tool_calls:
            result["tool_calls"] = [
                {"id": c.tool_call_id, "name": c.tool_name, "input": c.input}
                for c in self.tool_calls
            ]
        if self.tool_results:
            result["tool_results"] = [
                {"id": r.tool_call_id, "name": r.tool_name, "result": r.result, "is_error": r.is_error}
                for r in self.tool_results
            ]
        if self.warnings:
            result["warnings"] = list(self.warnings)
        if self.cost_usd is not None:
            result["cost_usd"] = self.cost_usd
        if self.duration_ms is not None:
            result["duration_ms"] = self.duration_ms
        if self.object_text is not None:
            result["object"] = self.object_text
        return result
