"""设置与输入校验。

claude-code-provider v0.1.0

在请求进入槽位池之前同步执行：
- 设置的形状、类型、范围（pydantic）
- 语义检查（工作目录存在等）
- 仅产生警告的检查（轮数过高、工具名格式异常、prompt 过长等）
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import SettingsValidationError
from .invokers.types import ClaudeCodeSettings, McpSseServer

__all__ = [
    "KNOWN_MODELS",
    "SettingsValidation",
    "validate_settings",
    "ensure_valid_settings",
    "validate_model_id",
    "validate_prompt",
    "validate_session_id",
]

KNOWN_MODELS = ("opus", "sonnet")

# 约 25k token
MAX_PROMPT_LENGTH = 100_000

HIGH_MAX_TURNS = 20
HIGH_MAX_THINKING_TOKENS = 50_000

_TOOL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\([^)]*\))?$")
_SESSION_ID_RE = re.compile(r"^[a-zA-Z0-9\-_]+$")
_MCP_TOOL_RE = re.compile(r"^mcp__[a-zA-Z0-9_\-]+__[a-zA-Z0-9_\-]+$")


@dataclass
class SettingsValidation:
    """设置校验结果。

    Attributes:
        valid: 是否通过
        errors: 错误列表（valid=False 时非空）
        warnings: 警告列表
        settings: 校验通过时的设置对象
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    settings: ClaudeCodeSettings | None = None


def _format_validation_error(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc", ()))
        message = err.get("msg", "invalid value")
        errors.append(f"{path}: {message}" if path else message)
    return errors


def _check_tool_names(tools: list[str], kind: str, warnings: list[str]) -> None:
    for tool in tools:
        if not _TOOL_NAME_RE.match(tool) and not tool.startswith("mcp__"):
            warnings.append(f"Unusual {kind} tool name format: '{tool}'")


def _check_mcp_servers(settings: ClaudeCodeSettings, errors: list[str]) -> None:
    for name, server in (settings.mcp_servers or {}).items():
        if not name.strip():
            errors.append("mcp_servers: server name cannot be empty")
        elif isinstance(server, McpSseServer):
            if not server.url.startswith(("http://", "https://")):
                errors.append(f"mcp_servers.{name}.url: must be an http(s) URL")
        elif not server.command.strip():
            errors.append(f"mcp_servers.{name}.command: cannot be empty")


def validate_settings(settings: ClaudeCodeSettings | Mapping[str, Any] | None) -> SettingsValidation:
    """校验设置，收集错误与警告（不抛出）。

    Args:
        settings: 设置对象或字典

    Returns:
        校验结果
    """
    warnings: list[str] = []

    if settings is None:
        parsed = ClaudeCodeSettings()
    elif isinstance(settings, ClaudeCodeSettings):
        parsed = settings
    else:
        try:
            parsed = ClaudeCodeSettings.model_validate(dict(settings))
        except ValidationError as e:
            return SettingsValidation(valid=False, errors=_format_validation_error(e))
        except (TypeError, ValueError) as e:
            return SettingsValidation(valid=False, errors=[f"Validation error: {e}"])

    errors: list[str] = []
    if parsed.cwd and not Path(parsed.cwd).exists():
        errors.append("cwd: Working directory must exist")

    if parsed.max_turns is not None and parsed.max_turns > HIGH_MAX_TURNS:
        warnings.append(
            f"High max_turns value ({parsed.max_turns}) may lead to long-running conversations"
        )

    if parsed.max_thinking_tokens is not None and parsed.max_thinking_tokens > HIGH_MAX_THINKING_TOKENS:
        warnings.append(
            f"Very high max_thinking_tokens ({parsed.max_thinking_tokens}) may increase response time"
        )

    if parsed.allowed_tools and parsed.disallowed_tools:
        warnings.append(
            "Both allowed_tools and disallowed_tools are specified. Only allowed_tools will be used."
        )

    if parsed.allowed_tools:
        _check_tool_names(parsed.allowed_tools, "allowed", warnings)
    if parsed.disallowed_tools:
        _check_tool_names(parsed.disallowed_tools, "disallowed", warnings)

    if parsed.mcp_servers:
        _check_mcp_servers(parsed, errors)

    if parsed.permission_prompt_tool_name:
        tool = parsed.permission_prompt_tool_name
        if not _MCP_TOOL_RE.match(tool):
            warnings.append(
                f"permission_prompt_tool_name '{tool}' does not look like an MCP tool (mcp__<server>__<tool>)"
            )
        if parsed.skip_permissions:
            warnings.append(
                "permission_prompt_tool_name has no effect while skip_permissions is enabled"
            )

    if parsed.resume:
        warning = validate_session_id(parsed.resume)
        if warning:
            warnings.append(warning)

    if errors:
        return SettingsValidation(valid=False, errors=errors, warnings=warnings)
    return SettingsValidation(valid=True, warnings=warnings, settings=parsed)


def ensure_valid_settings(
    settings: ClaudeCodeSettings | Mapping[str, Any] | None,
) -> tuple[ClaudeCodeSettings, list[str]]:
    """校验设置，失败时抛出。

    Returns:
        (设置对象, 警告列表)

    Raises:
        SettingsValidationError: 校验失败
    """
    result = validate_settings(settings)
    if not result.valid or result.settings is None:
        raise SettingsValidationError(result.errors, result.warnings)
    return result.settings, result.warnings


def validate_model_id(model_id: str) -> str | None:
    """校验模型 ID，未知模型返回警告（仍然允许使用）。

    Raises:
        ValueError: 模型 ID 为空
    """
    if not model_id or not model_id.strip():
        raise ValueError("Model ID cannot be empty")
    if model_id not in KNOWN_MODELS:
        return (
            f"Unknown model ID: '{model_id}'. Proceeding with custom model. "
            f"Known models are: {', '.join(KNOWN_MODELS)}"
        )
    return None


def validate_prompt(prompt: str) -> str | None:
    """过长的 prompt 返回警告。"""
    if len(prompt) > MAX_PROMPT_LENGTH:
        return (
            f"Very long prompt ({len(prompt)} characters) may cause performance issues or timeouts"
        )
    return None


def validate_session_id(session_id: str) -> str | None:
    """格式异常的会话 ID 返回警告。"""
    if session_id and not _SESSION_ID_RE.match(session_id):
        return "Unusual session ID format. This may cause issues with session resumption."
    return None
