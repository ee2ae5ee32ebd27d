"""Claude Code 内置工具定义。

claude-code-provider v0.1.0

这些工具由 CLI 自己执行，这里只提供名称、描述和参数 schema，
用于向宿主声明能力。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

__all__ = [
    "ToolDefinition",
    "BUILT_IN_TOOL_NAMES",
    "get_built_in_tools",
]


@dataclass(frozen=True)
class ToolDefinition:
    """工具定义。

    Attributes:
        name: 工具名（与 --allowedTools 中使用的名称一致）
        description: 工具描述
        parameters: JSON Schema
    """

    name: str
    description: str
    parameters: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def _schema(properties: dict[str, dict[str, Any]], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def _prop(json_type: str, description: str | None = None, **extra: Any) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": json_type, **extra}
    if description:
        prop["description"] = description
    return prop


def get_built_in_tools() -> list[ToolDefinition]:
    """返回全部内置工具定义（每次返回新列表）。"""
    return [
        ToolDefinition(
            name="Bash",
            description="Execute bash commands",
            parameters=_schema({
                "command": _prop("string", "The bash command to execute"),
                "description": _prop("string", "Description of what the command does"),
                "timeout": _prop("number", "Timeout in milliseconds"),
            }, ["command"]),
        ),
        ToolDefinition(
            name="Read",
            description="Read file contents",
            parameters=_schema({
                "file_path": _prop("string", "Absolute path to the file to read"),
                "offset": _prop("number", "Line number to start reading from"),
                "limit": _prop("number", "Number of lines to read"),
            }, ["file_path"]),
        ),
        ToolDefinition(
            name="Write",
            description="Write content to a file",
            parameters=_schema({
                "file_path": _prop("string", "Absolute path to the file to write"),
                "content": _prop("string", "Content to write to the file"),
            }, ["file_path", "content"]),
        ),
        ToolDefinition(
            name="Edit",
            description="Edit file contents by replacing text",
            parameters=_schema({
                "file_path": _prop("string", "Absolute path to the file to edit"),
                "old_string": _prop("string", "Text to replace"),
                "new_string": _prop("string", "Text to replace it with"),
                "replace_all": _prop("boolean", "Replace all occurrences"),
            }, ["file_path", "old_string", "new_string"]),
        ),
        ToolDefinition(
            name="Glob",
            description="Find files matching a pattern",
            parameters=_schema({
                "pattern": _prop("string", "Glob pattern to match files"),
                "path": _prop("string", "Directory to search in"),
            }, ["pattern"]),
        ),
        ToolDefinition(
            name="Grep",
            description="Search file contents using regex",
            parameters=_schema({
                "pattern": _prop("string", "Regular expression pattern to search for"),
                "path": _prop("string", "File or directory to search in"),
                "glob": _prop("string", "Glob pattern to filter files"),
                "type": _prop("string", "File type to search"),
                "output_mode": _prop("string", enum=["content", "files_with_matches", "count"]),
                "-i": _prop("boolean", "Case insensitive search"),
                "-n": _prop("boolean", "Show line numbers"),
                "-A": _prop("number", "Lines of context after match"),
                "-B": _prop("number", "Lines of context before match"),
                "-C": _prop("number", "Lines of context around match"),
            }, ["pattern"]),
        ),
        ToolDefinition(
            name="Task",
            description="Launch a specialized agent for complex tasks",
            parameters=_schema({
                "description": _prop("string", "Short description of the task"),
                "prompt": _prop("string", "Detailed task prompt for the agent"),
                "subagent_type": _prop("string", "Type of agent to use"),
            }, ["description", "prompt", "subagent_type"]),
        ),
        ToolDefinition(
            name="WebFetch",
            description="Fetch content from a URL",
            parameters=_schema({
                "url": _prop("string", "URL to fetch content from"),
                "prompt": _prop("string", "What to extract from the content"),
            }, ["url", "prompt"]),
        ),
        ToolDefinition(
            name="WebSearch",
            description="Search the web",
            parameters=_schema({
                "query": _prop("string", "Search query"),
                "allowed_domains": _prop("array", items={"type": "string"}),
                "blocked_domains": _prop("array", items={"type": "string"}),
            }, ["query"]),
        ),
    ]


BUILT_IN_TOOL_NAMES: frozenset[str] = frozenset(tool.name for tool in get_built_in_tools())
