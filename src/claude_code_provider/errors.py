"""错误分类与异常定义。

claude-code-provider v0.1.0

所有失败最终归入固定的五类错误之一：
- AuthenticationError: CLI 未登录 / API key 无效
- TimeoutError: 请求超时，进程已被终止
- CancelledError: 调用方取消，进程已被终止
- ProtocolError: stdout 违反 stream-json 协议
- APICallError: 其他失败（非零退出、错误记录、无法启动）

分类函数都是纯函数：相同输入永远得到相同分类。
"""

from __future__ import annotations

import errno
import re
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

__all__ = [
    # 分类
    "ErrorKind",
    "ErrorMetadata",
    # 异常
    "ClaudeCodeError",
    "ClaudeCodeAuthenticationError",
    "ClaudeCodeTimeoutError",
    "ClaudeCodeCancelledError",
    "ClaudeCodeProtocolError",
    "ClaudeCodeAPICallError",
    "SettingsValidationError",
    "SlotPoolError",
    # 分类函数
    "is_authentication_message",
    "classify_exit",
    "classify_error_record",
    "classify_spawn_failure",
    "timeout_error",
    "cancelled_error",
    "protocol_error",
    "with_context",
    "make_error",
]

# 错误信息中保留的 stderr 行数
STDERR_TAIL_LINES = 5

# prompt 摘要长度
PROMPT_EXCERPT_CHARS = 200

_AUTH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"not logged in",
        r"authentication",
        r"unauthorized",
        r"auth failed",
        r"please login",
        r"please log in",
        r"claude login",
        r"/login",
        r"(?:invalid|missing)\s+api\s*key",
    )
]

_AUTH_EXIT_CODE = 401


class ErrorKind(str, Enum):
    """错误分类。值即对外暴露的错误名称。"""

    AUTHENTICATION = "AuthenticationError"
    TIMEOUT = "TimeoutError"
    CANCELLED = "CancelledError"
    PROTOCOL = "ProtocolError"
    API_CALL = "APICallError"


@dataclass(frozen=True)
class ErrorMetadata:
    """错误附带的上下文信息。

    Attributes:
        code: 错误码（errno 名称或 CLI 返回的 code）
        exit_code: 进程退出码
        stderr_tail: stderr 尾部内容
        session_id: 会话 ID
        prompt_excerpt: prompt 前 200 字符
        timeout_seconds: 超时时间（仅超时错误）
        line: 触发协议错误的原始行（截断）
    """

    code: str | None = None
    exit_code: int | None = None
    stderr_tail: str | None = None
    session_id: str | None = None
    prompt_excerpt: str | None = None
    timeout_seconds: float | None = None
    line: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为字典，省略空字段。"""
        return {k: v for k, v in asdict(self).items() if v is not None}


class ClaudeCodeError(Exception):
    """所有分类错误的基类。

    Attributes:
        kind: 错误分类
        message: 错误消息
        metadata: 上下文信息
        is_retryable: 调用方是否可以重试
    """

    kind: ErrorKind = ErrorKind.API_CALL

    def __init__(
        self,
        message: str,
        *,
        metadata: ErrorMetadata | None = None,
        is_retryable: bool = False,
    ) -> None:
        self.message = message
        self.metadata = metadata or ErrorMetadata()
        self.is_retryable = is_retryable
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.value})"


class ClaudeCodeAuthenticationError(ClaudeCodeError):
    """CLI 认证失败。"""

    kind = ErrorKind.AUTHENTICATION


class ClaudeCodeTimeoutError(ClaudeCodeError):
    """请求超时。"""

    kind = ErrorKind.TIMEOUT


class ClaudeCodeCancelledError(ClaudeCodeError):
    """请求被调用方取消。"""

    kind = ErrorKind.CANCELLED


class ClaudeCodeProtocolError(ClaudeCodeError):
    """stdout 违反协议（非法 JSON、未知记录类型、工具调用顺序错误等）。"""

    kind = ErrorKind.PROTOCOL


class ClaudeCodeAPICallError(ClaudeCodeError):
    """其他调用失败。"""

    kind = ErrorKind.API_CALL


class SettingsValidationError(ValueError):
    """设置校验失败，在占用进程槽位之前同步抛出。

    Attributes:
        errors: 错误列表
        warnings: 警告列表
    """

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("Invalid settings: " + "; ".join(self.errors))


class SlotPoolError(RuntimeError):
    """槽位池使用错误（重复释放、释放不属于本池的槽位）。属于编程错误。"""
    pass


_KIND_TO_CLASS: dict[ErrorKind, type[ClaudeCodeError]] = {
    ErrorKind.AUTHENTICATION: ClaudeCodeAuthenticationError,
    ErrorKind.TIMEOUT: ClaudeCodeTimeoutError,
    ErrorKind.CANCELLED: ClaudeCodeCancelledError,
    ErrorKind.PROTOCOL: ClaudeCodeProtocolError,
    ErrorKind.API_CALL: ClaudeCodeAPICallError,
}


def make_error(
    kind: ErrorKind | str,
    message: str,
    *,
    metadata: ErrorMetadata | None = None,
    is_retryable: bool = False,
) -> ClaudeCodeError:
    """按分类构造对应的异常实例。"""
    cls = _KIND_TO_CLASS[ErrorKind(kind)]
    return cls(message, metadata=metadata, is_retryable=is_retryable)


def is_authentication_message(text: str | None) -> bool:
    """判断文本是否为认证失败提示。"""
    if not text:
        return False
    return any(p.search(text) for p in _AUTH_PATTERNS)


def _excerpt(prompt: str | None) -> str | None:
    if prompt is None:
        return None
    return prompt[:PROMPT_EXCERPT_CHARS]


def _tail_lines(stderr: str, count: int = STDERR_TAIL_LINES) -> str:
    lines = [line for line in stderr.strip().splitlines() if line.strip()]
    return "\n".join(lines[-count:])


def classify_exit(
    returncode: int,
    stderr: str = "",
    *,
    session_id: str | None = None,
    prompt: str | None = None,
    cli_name: str = "claude",
) -> ClaudeCodeError:
    """对非零退出进行分类。

    Args:
        returncode: 进程退出码
        stderr: stderr 尾部内容
        session_id: 会话 ID
        prompt: 原始 prompt（仅保留摘要）
        cli_name: 错误消息中使用的 CLI 名称

    Returns:
        AuthenticationError（认证提示或退出码 401）或 APICallError
    """
    tail = _tail_lines(stderr)
    metadata = ErrorMetadata(
        exit_code=returncode,
        stderr_tail=stderr or None,
        session_id=session_id,
        prompt_excerpt=_excerpt(prompt),
    )

    if returncode == _AUTH_EXIT_CODE or is_authentication_message(stderr):
        message = "Authentication failed. Please ensure Claude Code is properly authenticated (run: claude login)"
        if tail:
            message = f"{message}:\n{tail}"
        return ClaudeCodeAuthenticationError(message, metadata=metadata)

    message = f"{cli_name} exited with code {returncode}"
    if tail:
        message = f"{message}:\n{tail}"
    return ClaudeCodeAPICallError(message, metadata=metadata)


def classify_error_record(
    message: str,
    *,
    code: str | None = None,
    exit_code: int | None = None,
    stderr: str = "",
    session_id: str | None = None,
    prompt: str | None = None,
) -> ClaudeCodeError:
    """对 stream 中的 error / 失败 result 记录进行分类。"""
    metadata = ErrorMetadata(
        code=code,
        exit_code=exit_code,
        stderr_tail=stderr or None,
        session_id=session_id,
        prompt_excerpt=_excerpt(prompt),
    )
    if is_authentication_message(message) or is_authentication_message(code):
        return ClaudeCodeAuthenticationError(message, metadata=metadata)
    return ClaudeCodeAPICallError(message, metadata=metadata)


def classify_spawn_failure(
    exc: OSError,
    executable: str,
    *,
    prompt: str | None = None,
) -> ClaudeCodeError:
    """对进程启动失败进行分类。

    ENOENT（可执行文件不存在）视为可重试：安装后即可恢复。
    """
    code = errno.errorcode.get(exc.errno, None) if exc.errno is not None else None
    metadata = ErrorMetadata(code=code, prompt_excerpt=_excerpt(prompt))
    return ClaudeCodeAPICallError(
        f"Failed to spawn Claude CLI ({executable}): {exc}",
        metadata=metadata,
        is_retryable=exc.errno == errno.ENOENT,
    )


def timeout_error(
    timeout_seconds: float,
    *,
    stderr: str = "",
    session_id: str | None = None,
    prompt: str | None = None,
) -> ClaudeCodeTimeoutError:
    """构造超时错误（可重试）。"""
    return ClaudeCodeTimeoutError(
        f"Claude CLI timed out after {timeout_seconds:g} seconds",
        metadata=ErrorMetadata(
            code="TIMEOUT",
            timeout_seconds=timeout_seconds,
            stderr_tail=stderr or None,
            session_id=session_id,
            prompt_excerpt=_excerpt(prompt),
        ),
        is_retryable=True,
    )


def cancelled_error(
    reason: str | None = None,
    *,
    stderr: str = "",
    session_id: str | None = None,
) -> ClaudeCodeCancelledError:
    """构造取消错误。"""
    message = "Request was cancelled"
    if reason:
        message = f"{message}: {reason}"
    return ClaudeCodeCancelledError(
        message,
        metadata=ErrorMetadata(
            code="CANCELLED",
            stderr_tail=stderr or None,
            session_id=session_id,
        ),
    )


def protocol_error(
    message: str,
    *,
    line: str | bytes | None = None,
    session_id: str | None = None,
    stderr: str = "",
) -> ClaudeCodeProtocolError:
    """构造协议错误，原始行截断到 200 字符。"""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    return ClaudeCodeProtocolError(
        message,
        metadata=ErrorMetadata(
            code="PROTOCOL",
            line=line[:200] if line is not None else None,
            session_id=session_id,
            stderr_tail=stderr or None,
        ),
    )


def with_context(
    error: ClaudeCodeError,
    *,
    exit_code: int | None = None,
    stderr: str = "",
    session_id: str | None = None,
    prompt: str | None = None,
) -> ClaudeCodeError:
    """补全进程结束后才能得到的上下文（退出码、stderr、会话）。

    已有字段保持不变，返回同类的新实例。
    """
    current = error.metadata
    metadata = replace(
        current,
        exit_code=current.exit_code if current.exit_code is not None else exit_code,
        stderr_tail=current.stderr_tail or stderr or None,
        session_id=current.session_id or session_id,
        prompt_excerpt=current.prompt_excerpt or _excerpt(prompt),
    )
    if metadata == current:
        return error
    enriched = type(error)(error.message, metadata=metadata, is_retryable=error.is_retryable)
    enriched.__cause__ = error.__cause__
    return enriched
