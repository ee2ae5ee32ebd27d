"""错误分类测试。"""

from __future__ import annotations

import errno

import pytest

from claude_code_provider.errors import (
    ClaudeCodeAPICallError,
    ClaudeCodeAuthenticationError,
    ClaudeCodeCancelledError,
    ClaudeCodeProtocolError,
    ClaudeCodeTimeoutError,
    ErrorKind,
    ErrorMetadata,
    SettingsValidationError,
    cancelled_error,
    classify_error_record,
    classify_exit,
    classify_spawn_failure,
    is_authentication_message,
    make_error,
    protocol_error,
    timeout_error,
    with_context,
)
from claude_code_provider.parsers.events import ErrorEvent


class TestAuthenticationDetection:
    """测试认证失败识别。"""

    @pytest.mark.parametrize("text", [
        "Error: Not logged in",
        "authentication failed",
        "401 Unauthorized",
        "Invalid API key · Please run /login",
        "Please run `claude login`",
    ])
    def test_auth_messages(self, text: str):
        assert is_authentication_message(text)

    @pytest.mark.parametrize("text", [None, "", "rate limited", "connection reset"])
    def test_other_messages(self, text):
        assert not is_authentication_message(text)


class TestClassifyExit:
    """测试非零退出分类。"""

    def test_plain_failure(self):
        """普通失败：APICallError，消息包含退出码和 stderr 末尾几行。"""
        stderr = "\n".join(f"line {i}" for i in range(10))
        error = classify_exit(2, stderr, session_id="s1", prompt="hello")

        assert isinstance(error, ClaudeCodeAPICallError)
        assert error.kind is ErrorKind.API_CALL
        assert error.message.startswith("claude exited with code 2:")
        assert "line 9" in error.message
        assert "line 4" not in error.message
        assert error.metadata.exit_code == 2
        assert error.metadata.stderr_tail == stderr
        assert error.metadata.session_id == "s1"
        assert error.metadata.prompt_excerpt == "hello"
        assert not error.is_retryable

    def test_no_stderr(self):
        error = classify_exit(1)
        assert error.message == "claude exited with code 1"
        assert error.metadata.stderr_tail is None

    def test_auth_from_stderr(self):
        error = classify_exit(1, "Error: Not logged in")
        assert isinstance(error, ClaudeCodeAuthenticationError)
        assert "claude login" in error.message

    def test_auth_from_exit_code(self):
        assert isinstance(classify_exit(401, ""), ClaudeCodeAuthenticationError)

    def test_deterministic(self):
        """相同输入得到相同分类。"""
        a = classify_exit(3, "boom")
        b = classify_exit(3, "boom")
        assert type(a) is type(b)
        assert a.message == b.message

    def test_prompt_excerpt_truncated(self):
        error = classify_exit(1, prompt="x" * 1000)
        assert len(error.metadata.prompt_excerpt) == 200


class TestOtherClassifiers:
    """测试其他分类函数。"""

    def test_error_record(self):
        error = classify_error_record("overloaded", code="overloaded_error")
        assert isinstance(error, ClaudeCodeAPICallError)
        assert error.metadata.code == "overloaded_error"

    def test_error_record_auth(self):
        assert isinstance(
            classify_error_record("x", code="authentication_error"),
            ClaudeCodeAuthenticationError,
        )

    def test_spawn_missing(self):
        """可执行文件不存在：可重试，code 为 errno 名称。"""
        exc = FileNotFoundError(errno.ENOENT, "No such file or directory")
        error = classify_spawn_failure(exc, "/nope/claude")
        assert isinstance(error, ClaudeCodeAPICallError)
        assert error.is_retryable
        assert error.metadata.code == "ENOENT"
        assert "/nope/claude" in error.message

    def test_spawn_permission(self):
        exc = PermissionError(errno.EACCES, "Permission denied")
        error = classify_spawn_failure(exc, "claude")
        assert not error.is_retryable
        assert error.metadata.code == "EACCES"

    def test_timeout(self):
        error = timeout_error(1.5, stderr="slow")
        assert isinstance(error, ClaudeCodeTimeoutError)
        assert error.message == "Claude CLI timed out after 1.5 seconds"
        assert error.is_retryable
        assert error.metadata.timeout_seconds == 1.5
        assert error.metadata.code == "TIMEOUT"

    def test_cancelled(self):
        assert cancelled_error().message == "Request was cancelled"
        error = cancelled_error("user", session_id="s")
        assert isinstance(error, ClaudeCodeCancelledError)
        assert error.message == "Request was cancelled: user"
        assert error.metadata.session_id == "s"

    def test_cancelled_keeps_stderr(self):
        error = cancelled_error("user", stderr="working...")
        assert error.metadata.stderr_tail == "working..."

    def test_protocol_line_truncated(self):
        error = protocol_error("bad", line=b"y" * 500)
        assert isinstance(error, ClaudeCodeProtocolError)
        assert error.metadata.line == "y" * 200

    @pytest.mark.parametrize("kind,cls", [
        (ErrorKind.AUTHENTICATION, ClaudeCodeAuthenticationError),
        (ErrorKind.TIMEOUT, ClaudeCodeTimeoutError),
        (ErrorKind.CANCELLED, ClaudeCodeCancelledError),
        (ErrorKind.PROTOCOL, ClaudeCodeProtocolError),
        (ErrorKind.API_CALL, ClaudeCodeAPICallError),
    ])
    def test_make_error(self, kind: ErrorKind, cls: type):
        error = make_error(kind.value, "m")
        assert type(error) is cls
        assert error.kind is kind

    def test_metadata_to_dict_drops_none(self):
        assert ErrorMetadata(code="X").to_dict() == {"code": "X"}

    def test_settings_validation_error_is_value_error(self):
        error = SettingsValidationError(["timeout: bad"], ["w"])
        assert isinstance(error, ValueError)
        assert error.errors == ["timeout: bad"]
        assert error.warnings == ["w"]
        assert "timeout: bad" in str(error)


class TestErrorEvent:
    """测试错误事件与异常的互相转换。"""

    def test_restores_class_and_metadata(self):
        original = timeout_error(3.0, session_id="s9")
        event = ErrorEvent.from_exception(original)

        assert event.kind is ErrorKind.TIMEOUT
        assert event.is_retryable
        restored = event.to_exception()
        assert isinstance(restored, ClaudeCodeTimeoutError)
        assert restored.message == original.message
        assert restored.metadata == original.metadata


class TestWithContext:
    """测试进程结束后补全错误上下文。"""

    def test_fills_missing_fields(self):
        original = classify_error_record("overloaded", code="overloaded_error", session_id="s1")
        enriched = with_context(original, exit_code=1, stderr="diag", session_id="s2", prompt="p")

        assert type(enriched) is ClaudeCodeAPICallError
        assert enriched.message == "overloaded"
        assert enriched.metadata.code == "overloaded_error"
        assert enriched.metadata.exit_code == 1
        assert enriched.metadata.stderr_tail == "diag"
        assert enriched.metadata.session_id == "s1"
        assert enriched.metadata.prompt_excerpt == "p"

    def test_keeps_existing_fields(self):
        original = protocol_error("bad", line="{x", stderr="early")
        enriched = with_context(original, exit_code=-15, stderr="late")

        assert isinstance(enriched, ClaudeCodeProtocolError)
        assert enriched.metadata.stderr_tail == "early"
        assert enriched.metadata.line == "{x"
        assert enriched.metadata.exit_code == -15

    def test_nothing_to_add(self):
        original = timeout_error(1.0)
        assert with_context(original) is original
