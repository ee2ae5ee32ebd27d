"""Claude Code Provider - 以 Claude Code CLI 子进程作为语言模型后端。

环境变量:
    CCP_CLI_PATH: claude 可执行文件路径
    CCP_MAX_PROCESSES: 同时运行的 CLI 进程上限 (默认 4)
    CCP_TIMEOUT: 单个请求超时 (默认 120 秒)

用法:
    from claude_code_provider import create_claude_code

    provider = create_claude_code()
    result = await provider("sonnet").generate("Say hello")
"""

__version__ = "0.1.0"

from .errors import (
    ClaudeCodeAPICallError,
    ClaudeCodeAuthenticationError,
    ClaudeCodeCancelledError,
    ClaudeCodeError,
    ClaudeCodeProtocolError,
    ClaudeCodeTimeoutError,
    ErrorKind,
    SettingsValidationError,
    SlotPoolError,
)
from .invokers.types import (
    ClaudeCodeSettings,
    GenerationMode,
    GenerationResult,
    McpSseServer,
    McpStdioServer,
    PermissionMode,
)
from .parsers.base import FinishReason, MalformedRecordPolicy
from .provider import ClaudeCodeLanguageModel, ClaudeCodeProvider, create_claude_code
from .runtime.cancellation import CancellationToken

__all__ = [
    "__version__",
    "create_claude_code",
    "ClaudeCodeProvider",
    "ClaudeCodeLanguageModel",
    "ClaudeCodeSettings",
    "GenerationMode",
    "GenerationResult",
    "PermissionMode",
    "McpStdioServer",
    "McpSseServer",
    "FinishReason",
    "MalformedRecordPolicy",
    "CancellationToken",
    "ErrorKind",
    "ClaudeCodeError",
    "ClaudeCodeAuthenticationError",
    "ClaudeCodeTimeoutError",
    "ClaudeCodeCancelledError",
    "ClaudeCodeProtocolError",
    "ClaudeCodeAPICallError",
    "SettingsValidationError",
    "SlotPoolError",
]
