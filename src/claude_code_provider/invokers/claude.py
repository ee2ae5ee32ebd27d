"""Claude CLI 调用器。

claude-code-provider invokers v0.1.0

将槽位池、进程生命周期和流式协议适配器组合为单次请求的事件流。

命令格式:
    claude \
      -p \
      --output-format stream-json \
      --verbose \
      [--include-partial-messages] \
      [--input-format stream-json] \
      --model {model} \
      [--system-prompt "{system_prompt}"] \
      [--append-system-prompt "{append_system_prompt}"] \
      [--max-turns {n}] \
      [--permission-mode {mode}] \
      [--dangerously-skip-permissions] \
      [--permission-prompt-tool {tool}] \
      [--allowedTools a,b | --disallowedTools a,b] \
      [--mcp-config {json}] \
      [--resume {session_id} | --continue]

Prompt 通过 stdin 传递，不作为命令行参数。

每个请求的保证：
- 槽位在进程的整个生命周期内持有，任何退出路径上恰好释放一次
- 事件按 stdout 记录顺序产出
- 恰好一个终止事件（finish 或 error），且在进程回收、槽位释放之后产出
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import aclosing

from ..errors import (
    ClaudeCodeError,
    ClaudeCodeProtocolError,
    classify_exit,
    classify_spawn_failure,
    cancelled_error,
    protocol_error,
    timeout_error,
    with_context,
)
from ..parsers.claude import ClaudeStreamParser
from ..parsers.events import ErrorEvent, StreamEvent
from ..runtime.process_runner import (
    ProcessHandle,
    ProcessRunner,
    ProcessSpec,
    TerminationReason,
)
from ..runtime.slot_pool import ProcessSlotPool, Slot
from .types import GenerationRequest

__all__ = ["ClaudeInvoker"]

logger = logging.getLogger(__name__)

# 传递思考 token 上限的环境变量
MAX_THINKING_TOKENS_ENV = "MAX_THINKING_TOKENS"


class ClaudeInvoker:
    """Claude CLI 调用器。

    封装 Claude CLI 的调用逻辑，包括：
    - 命令行参数构建
    - 槽位获取与释放
    - 进程生命周期（取消、超时、终止）
    - stdout 记录解析与终止事件决议

    Example:
        invoker = ClaudeInvoker(ProcessSlotPool(capacity=4))
        async for event in invoker.stream(GenerationRequest(prompt="Say hello")):
            print(event)
    """

    def __init__(
        self,
        pool: ProcessSlotPool,
        runner: ProcessRunner | None = None,
    ) -> None:
        """初始化 Claude 调用器。

        Args:
            pool: 进程槽位池（同一 provider 下的所有请求共享）
            runner: 进程启动器，默认使用默认超时的 ProcessRunner
        """
        self._pool = pool
        self._runner = runner or ProcessRunner()

    @property
    def pool(self) -> ProcessSlotPool:
        return self._pool

    def build_command(self, request: GenerationRequest) -> list[str]:
        """构建 Claude CLI 命令。

        Args:
            request: 生成请求

        Returns:
            命令行参数列表
        """
        settings = request.settings
        cmd = [settings.cli_path]

        # 硬编码：非交互模式
        cmd.append("-p")

        # 硬编码：流式 JSON 输出（需要 --verbose）
        cmd.extend(["--output-format", "stream-json"])
        cmd.append("--verbose")

        if settings.include_partial_messages:
            cmd.append("--include-partial-messages")

        if settings.streaming_input:
            cmd.extend(["--input-format", "stream-json"])

        if request.model:
            cmd.extend(["--model", request.model])

        # 系统提示词：system 消息优先于设置
        system_prompt = request.system_prompt or settings.custom_system_prompt
        if system_prompt:
            cmd.extend(["--system-prompt", system_prompt])
        if settings.append_system_prompt:
            cmd.extend(["--append-system-prompt", settings.append_system_prompt])

        if settings.max_turns is not None:
            cmd.extend(["--max-turns", str(settings.max_turns)])

        if settings.permission_mode is not None:
            cmd.extend(["--permission-mode", settings.permission_mode.value])
        if settings.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        if settings.permission_prompt_tool_name:
            cmd.extend(["--permission-prompt-tool", settings.permission_prompt_tool_name])

        # 同时指定时只使用 allowedTools
        if settings.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(settings.allowed_tools)])
        elif settings.disallowed_tools:
            cmd.extend(["--disallowedTools", ",".join(settings.disallowed_tools)])

        if settings.mcp_servers:
            cmd.extend(["--mcp-config", self.build_mcp_config(request)])

        # 会话恢复
        if settings.resume:
            cmd.extend(["--resume", settings.resume])
        elif settings.continue_session:
            cmd.append("--continue")

        return cmd

    def build_mcp_config(self, request: GenerationRequest) -> str:
        """将 mcp_servers 序列化为 --mcp-config 接受的 JSON。"""
        servers = {
            name: server.model_dump()
            for name, server in (request.settings.mcp_servers or {}).items()
        }
        return json.dumps({"mcpServers": servers}, ensure_ascii=False)

    def get_env(self, request: GenerationRequest) -> dict[str, str] | None:
        """构建子进程环境变量，无覆盖时返回 None（继承父进程）。"""
        settings = request.settings
        overrides = dict(settings.env)
        if settings.max_thinking_tokens is not None:
            overrides[MAX_THINKING_TOKENS_ENV] = str(settings.max_thinking_tokens)
        if not overrides:
            return None
        return {**os.environ, **overrides}

    def build_stdin(self, request: GenerationRequest) -> bytes:
        """构建 stdin 内容。

        - 普通模式：prompt 原文
        - streaming_input 模式：一条 stream-json user 消息
        """
        if not request.settings.streaming_input:
            return request.prompt.encode("utf-8")
        message = {
            "type": "user",
            "message": {
                "role": "user",
                "content": [{"type": "text", "text": request.prompt}],
            },
        }
        return (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")

    def build_process_spec(self, request: GenerationRequest) -> ProcessSpec:
        return ProcessSpec(
            argv=self.build_command(request),
            cwd=request.cwd,
            env=self.get_env(request),
            stdin_bytes=self.build_stdin(request),
            keep_stdin_open=request.settings.streaming_input,
        )

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        """执行一次请求，逐个产出事件。

        最后一个事件总是 FinishEvent 或 ErrorEvent。
        调用方提前关闭迭代器或任务被取消时，进程被终止、槽位被释放，
        不再产出终止事件。

        Args:
            request: 生成请求（设置已校验）

        Yields:
            生成事件
        """
        try:
            slot = await self._pool.acquire(request.cancellation)
        except ClaudeCodeError as e:
            # 排队期间被取消，从未占用槽位
            logger.debug(f"Request cancelled while queued: {e.message}")
            yield ErrorEvent.from_exception(e)
            return

        released = False

        def release() -> None:
            nonlocal released
            if not released:
                released = True
                self._pool.release(slot)

        handle: ProcessHandle | None = None
        unregister = None
        try:
            spec = self.build_process_spec(request)
            logger.info(
                f"Executing claude model={request.model} "
                f"prompt_chars={len(request.prompt)} slot={slot.serial}"
            )
            verbose_log = logger.info if request.settings.verbose else logger.debug
            verbose_log(f"[SUBPROCESS] Command: {' '.join(spec.argv)}")

            try:
                handle = await self._runner.spawn(spec)
            except OSError as e:
                error = classify_spawn_failure(e, spec.argv[0], prompt=request.prompt)
                logger.warning(error.message)
                release()
                yield ErrorEvent.from_exception(error)
                return

            if request.cancellation is not None:
                process = handle
                unregister = request.cancellation.add_callback(
                    lambda reason: process.request_termination(TerminationReason.CANCELLED, reason)
                )
            handle.arm_timeout(request.settings.timeout)

            parser = ClaudeStreamParser(
                malformed_policy=request.settings.malformed_record_policy,
            )
            protocol_failure: ClaudeCodeProtocolError | None = None

            async with aclosing(self._read_events(handle, parser, request)) as events:
                async for event in events:
                    if isinstance(event, ClaudeCodeProtocolError):
                        protocol_failure = event
                        break
                    if request.settings.verbose:
                        logger.info(f"[EVENT] {event.type.value} pid={handle.pid}")
                    yield event

            # 等待进程退出（被终止时等待终止流程完成）
            returncode = await handle.wait()
            reason = handle.mark_exited()
            if unregister is not None:
                unregister()
                unregister = None
            await handle.aclose()

            terminal = self._resolve_terminal(
                request, handle, parser, reason, returncode, protocol_failure,
            )
            release()

            if isinstance(terminal, ErrorEvent):
                logger.warning(f"Claude request failed kind={terminal.kind.value}: {terminal.message}")
            else:
                logger.debug(
                    f"Claude request finished reason={terminal.finish_reason.value} "
                    f"session={terminal.session_id}"
                )
            yield terminal

        finally:
            if unregister is not None:
                unregister()
            if handle is not None:
                await handle.aclose()
            release()

    async def _read_events(
        self,
        handle: ProcessHandle,
        parser: ClaudeStreamParser,
        request: GenerationRequest,
    ) -> AsyncIterator[StreamEvent | ClaudeCodeProtocolError]:
        """读取 stdout 并解析为事件，协议错误作为最后一项产出。

        终止请求（取消、超时）发生后立即停止产出。
        """
        while True:
            chunk = await handle.read_chunk()
            if chunk is None:
                return

            try:
                events = parser.feed(chunk) if chunk else iter(parser.end_of_input())
                for event in events:
                    if handle.stop_requested:
                        return
                    yield event
            except ClaudeCodeProtocolError as e:
                logger.warning(f"Protocol violation: {e.message}")
                handle.request_termination(TerminationReason.ABORTED, e.message)
                yield e
                return

            if parser.has_terminal and request.settings.streaming_input:
                handle.close_stdin()

            if not chunk:
                return

    def _resolve_terminal(
        self,
        request: GenerationRequest,
        handle: ProcessHandle,
        parser: ClaudeStreamParser,
        reason: TerminationReason,
        returncode: int,
        protocol_failure: ClaudeCodeProtocolError | None,
    ) -> StreamEvent:
        """根据终止原因和退出码决定唯一的终止事件。

        - TIMEOUT / CANCELLED / ABORTED: 由终止原因决定
        - EXITED: error 记录 > 非零退出码 > finish 记录 > 缺少终止记录
        """
        stderr = handle.stderr_text()
        session_id = parser.session_id

        if reason is TerminationReason.TIMEOUT:
            error: ClaudeCodeError = timeout_error(
                request.settings.timeout or 0.0,
                stderr=stderr,
                session_id=session_id,
                prompt=request.prompt,
            )
        elif reason is TerminationReason.CANCELLED:
            error = cancelled_error(handle.detail, stderr=stderr, session_id=session_id)
        elif reason is TerminationReason.ABORTED:
            error = protocol_failure or protocol_error(
                f"Claude CLI aborted: {handle.detail or 'unknown reason'}",
                session_id=session_id,
                stderr=stderr,
            )
        elif parser.terminal_error is not None:
            error = parser.terminal_error
        elif returncode != 0:
            error = classify_exit(
                returncode,
                stderr,
                session_id=session_id,
                prompt=request.prompt,
            )
        elif parser.terminal_finish is not None:
            if parser.open_tool_calls:
                logger.warning(f"Stream finished with open tool calls: {parser.open_tool_calls}")
            return parser.terminal_finish
        else:
            error = protocol_error(
                "Claude CLI exited without a terminal record",
                session_id=session_id,
                stderr=stderr,
            )

        # 解析阶段构造的错误在进程退出前生成，此处补全退出码和 stderr
        error = with_context(
            error,
            exit_code=returncode,
            stderr=stderr,
            session_id=session_id,
            prompt=request.prompt,
        )
        return ErrorEvent.from_exception(error)
