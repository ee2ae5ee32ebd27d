"""命令行入口。

用法:
    claude-code-provider "Say hello"
    echo "Say hello" | claude-code-provider --stream
    python -m claude_code_provider --model opus --json "Summarize README.md"

SIGINT 通过取消令牌取消当前请求（进程被终止、槽位被释放），退出码 130。
失败时错误信息输出到 stderr，退出码 1。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from contextlib import aclosing
from typing import Any

from . import __version__
from .config import Config, get_config
from .errors import (
    ClaudeCodeCancelledError,
    ClaudeCodeError,
    SettingsValidationError,
    protocol_error,
)
from .invokers.types import GenerationResult, PermissionMode
from .parsers.events import ErrorEvent, FinishEvent, TextDeltaEvent
from .provider import ClaudeCodeProvider
from .runtime.cancellation import CancellationToken

__all__ = ["configure_logging", "build_parser", "run", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130  # 128 + SIGINT(2)


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - 默认：stderr，claude_code_provider 命名空间 INFO
    - CCP_LOG_DEBUG：输出到临时文件，DEBUG
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # root logger（第三方库）保持 WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("claude_code_provider").setLevel(log_level)


def _split_tools(value: str | None) -> list[str] | None:
    if not value:
        return None
    tools = [tool.strip() for tool in value.split(",") if tool.strip()]
    return tools or None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-code-provider",
        description="Run a prompt through the Claude Code CLI.",
    )
    parser.add_argument("prompt", nargs="?", help="prompt text (read from stdin when omitted)")
    parser.add_argument("--model", default="sonnet", help="model id (default: sonnet)")
    parser.add_argument("--system-prompt", help="system prompt")
    parser.add_argument("--stream", action="store_true", help="print text as it arrives")
    parser.add_argument("--timeout", type=float, help="request timeout in seconds")
    parser.add_argument("--cwd", help="working directory for the CLI")
    parser.add_argument("--allowed-tools", help="comma separated list of allowed tools")
    parser.add_argument("--disallowed-tools", help="comma separated list of disallowed tools")
    parser.add_argument(
        "--permission-mode",
        choices=[mode.value for mode in PermissionMode],
        help="CLI permission mode",
    )
    parser.add_argument("--resume", help="session id to resume")
    parser.add_argument("--json", action="store_true", help="print the result as JSON")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """命令行参数转设置覆盖（只包含显式指定的项）。"""
    settings: dict[str, Any] = {}
    if args.timeout is not None:
        settings["timeout"] = args.timeout
    if args.cwd:
        settings["cwd"] = args.cwd
    allowed = _split_tools(args.allowed_tools)
    if allowed:
        settings["allowed_tools"] = allowed
    disallowed = _split_tools(args.disallowed_tools)
    if disallowed:
        settings["disallowed_tools"] = disallowed
    if args.permission_mode:
        settings["permission_mode"] = args.permission_mode
    if args.resume:
        settings["resume"] = args.resume
    return settings


def _install_sigint(loop: asyncio.AbstractEventLoop, token: CancellationToken) -> None:
    def on_sigint() -> None:
        logger.info("SIGINT received, cancelling request")
        token.cancel("interrupted")

    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    else:
        signal.signal(signal.SIGINT, lambda sig, frame: loop.call_soon_threadsafe(on_sigint))


def _remove_sigint(loop: asyncio.AbstractEventLoop) -> None:
    if sys.platform != "win32":
        loop.remove_signal_handler(signal.SIGINT)
    else:
        signal.signal(signal.SIGINT, signal.default_int_handler)


def _print_result(result: GenerationResult, args: argparse.Namespace, config: Config) -> None:
    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(result.text)

    if config.debug:
        print(
            f"[session={result.session_id} finish={result.finish_reason.value} "
            f"tokens={result.usage.total} cost_usd={result.cost_usd}]",
            file=sys.stderr,
        )


async def _stream_text(
    provider: ClaudeCodeProvider,
    args: argparse.Namespace,
    prompt: str,
    settings: dict[str, Any],
    token: CancellationToken,
) -> FinishEvent:
    model = provider(args.model, settings)
    events = await model.stream(prompt, system_prompt=args.system_prompt, cancellation=token)
    async with aclosing(events):
        async for event in events:
            if isinstance(event, TextDeltaEvent):
                sys.stdout.write(event.text)
                sys.stdout.flush()
            elif isinstance(event, FinishEvent):
                sys.stdout.write("\n")
                return event
            elif isinstance(event, ErrorEvent):
                sys.stdout.write("\n")
                raise event.to_exception()
    raise protocol_error("Stream ended without a terminal event")


async def run(args: argparse.Namespace, prompt: str, config: Config) -> int:
    """执行单次请求，返回退出码。"""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    _install_sigint(loop, token)
    try:
        provider = ClaudeCodeProvider()
        settings = settings_from_args(args)

        if args.stream and not args.json:
            finish = await _stream_text(provider, args, prompt, settings, token)
            if config.debug:
                print(
                    f"[session={finish.session_id} finish={finish.finish_reason.value} "
                    f"tokens={finish.usage.total} cost_usd={finish.cost_usd}]",
                    file=sys.stderr,
                )
            return EXIT_OK

        model = provider(args.model, settings)
        result = await model.generate(prompt, system_prompt=args.system_prompt, cancellation=token)
        _print_result(result, args, config)
        return EXIT_OK

    except SettingsValidationError as e:
        print(str(e), file=sys.stderr)
        return EXIT_ERROR
    except ClaudeCodeCancelledError as e:
        print(e.message, file=sys.stderr)
        return EXIT_INTERRUPTED
    except ClaudeCodeError as e:
        print(f"{e.kind.value}: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return EXIT_ERROR
    finally:
        _remove_sigint(loop)


def main(argv: list[str] | None = None) -> int:
    """主入口点。"""
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config)

    prompt = args.prompt
    if prompt is None:
        if sys.stdin.isatty():
            print("No prompt given", file=sys.stderr)
            return EXIT_ERROR
        prompt = sys.stdin.read()

    logger.debug(f"Starting with {config}")
    return asyncio.run(run(args, prompt, config))


if __name__ == "__main__":
    sys.exit(main())
