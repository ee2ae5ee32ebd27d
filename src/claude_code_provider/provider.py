"""Claude Code provider 入口。

claude-code-provider v0.1.0

请求前门：
- ClaudeCodeProvider: 持有一个进程槽位池，按模型 ID 创建语言模型
- ClaudeCodeLanguageModel: generate / stream / generate_sync

设置、模型 ID、prompt 的校验在进入槽位池之前同步完成，
非法设置直接抛出 SettingsValidationError，不会启动进程。
"""

from __future__ import annotations

import functools
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from typing import Any

import anyio

from .built_in_tools import ToolDefinition, get_built_in_tools
from .config import get_config
from .invokers.claude import ClaudeInvoker
from .invokers.collector import ResultCollector
from .invokers.types import (
    ClaudeCodeSettings,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
)
from .parsers.events import FinishEvent, SessionInfoEvent, StreamEvent
from .prompt import to_prompt_text
from .runtime.cancellation import CancellationToken
from .runtime.process_runner import ProcessRunner
from .runtime.slot_pool import ProcessSlotPool
from .utils.json_extract import extract_json, validate_json_extraction
from .validation import ensure_valid_settings, validate_model_id, validate_prompt

__all__ = [
    "ClaudeCodeLanguageModel",
    "ClaudeCodeProvider",
    "create_claude_code",
]

logger = logging.getLogger(__name__)

SettingsInput = ClaudeCodeSettings | Mapping[str, Any] | None
PromptInput = str | Sequence[Mapping[str, Any]]

_UNSET: Any = object()


def _settings_data(settings: SettingsInput) -> dict[str, Any]:
    """设置转字典，只保留显式指定的字段。"""
    if settings is None:
        return {}
    if isinstance(settings, ClaudeCodeSettings):
        return settings.model_dump(exclude_unset=True)
    return dict(settings)


def _merge_settings(base: SettingsInput, overrides: SettingsInput) -> dict[str, Any]:
    return {**_settings_data(base), **_settings_data(overrides)}


class ClaudeCodeLanguageModel:
    """绑定到单个模型 ID 的语言模型。

    同一 provider 创建的所有模型共享一个槽位池。

    Example:
        model = provider("sonnet")
        result = await model.generate("Say hello")
        print(result.text)

        events = await model.stream("Count to 3")
        async for event in events:
            ...
    """

    def __init__(
        self,
        model_id: str,
        settings: ClaudeCodeSettings,
        invoker: ClaudeInvoker,
        warnings: list[str] | None = None,
    ) -> None:
        """初始化语言模型。

        Args:
            model_id: 模型 ID（opus / sonnet 或自定义）
            settings: 已校验的设置
            invoker: 共享的调用器
            warnings: 创建期间产生的警告（设置校验等）

        Raises:
            ValueError: 模型 ID 为空
        """
        model_warning = validate_model_id(model_id)
        self.model_id = model_id
        self.settings = settings
        self._invoker = invoker
        self._warnings: list[str] = list(warnings or [])
        if model_warning:
            logger.warning(model_warning)
            self._warnings.append(model_warning)
        self.last_session_id: str | None = None

    @property
    def provider(self) -> str:
        return "claude-code"

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def _prepare(
        self,
        prompt: PromptInput,
        *,
        system_prompt: str | None,
        cancellation: CancellationToken | None,
        settings: SettingsInput,
        mode: GenerationMode,
    ) -> tuple[GenerationRequest, list[str]]:
        """构建请求并收集警告。

        Raises:
            SettingsValidationError: 单次调用的设置覆盖非法
        """
        warnings = list(self._warnings)

        request_settings = self.settings
        if settings:
            request_settings, settings_warnings = ensure_valid_settings(
                _merge_settings(self.settings, settings)
            )
            warnings.extend(settings_warnings)

        if isinstance(prompt, str):
            prompt_text = prompt
        else:
            converted = to_prompt_text(prompt)
            prompt_text = converted.prompt
            system_prompt = system_prompt or converted.system_prompt
            warnings.extend(converted.warnings)

        prompt_warning = validate_prompt(prompt_text)
        if prompt_warning:
            logger.warning(prompt_warning)
            warnings.append(prompt_warning)

        request = GenerationRequest(
            prompt=prompt_text,
            model=self.model_id,
            system_prompt=system_prompt,
            settings=request_settings,
            cancellation=cancellation,
            mode=mode,
        )
        return request, warnings

    async def _events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        async with aclosing(self._invoker.stream(request)) as events:
            async for event in events:
                if isinstance(event, (SessionInfoEvent, FinishEvent)) and event.session_id:
                    self.last_session_id = event.session_id
                yield event

    async def stream(
        self,
        prompt: PromptInput,
        *,
        system_prompt: str | None = None,
        cancellation: CancellationToken | None = None,
        settings: SettingsInput = None,
        mode: GenerationMode = GenerationMode.REGULAR,
    ) -> AsyncIterator[StreamEvent]:
        """流式生成。

        校验在 await 时完成，返回的迭代器才真正排队并启动进程。
        最后一个事件总是 FinishEvent 或 ErrorEvent。

        Raises:
            SettingsValidationError: 设置非法
        """
        request, _ = self._prepare(
            prompt,
            system_prompt=system_prompt,
            cancellation=cancellation,
            settings=settings,
            mode=mode,
        )
        return self._events(request)

    async def generate(
        self,
        prompt: PromptInput,
        *,
        system_prompt: str | None = None,
        cancellation: CancellationToken | None = None,
        settings: SettingsInput = None,
        mode: GenerationMode = GenerationMode.REGULAR,
    ) -> GenerationResult:
        """非流式生成：读完事件流并归约。

        Raises:
            SettingsValidationError: 设置非法
            ClaudeCodeError: 请求失败（按错误类别细分的子类）
        """
        request, warnings = self._prepare(
            prompt,
            system_prompt=system_prompt,
            cancellation=cancellation,
            settings=settings,
            mode=mode,
        )
        collector = ResultCollector(warnings)
        async with aclosing(self._events(request)) as events:
            async for event in events:
                collector.process_event(event)

        result = collector.get_result()

        if mode is GenerationMode.OBJECT_JSON:
            extracted = extract_json(result.text)
            warning = validate_json_extraction(result.text, extracted)
            if warning:
                logger.warning(warning)
                result.warnings.append(warning)
            result.object_text = extracted

        return result

    def generate_sync(
        self,
        prompt: PromptInput,
        *,
        system_prompt: str | None = None,
        cancellation: CancellationToken | None = None,
        settings: SettingsInput = None,
        mode: GenerationMode = GenerationMode.REGULAR,
    ) -> GenerationResult:
        """阻塞版本的 generate，不能在运行中的事件循环里调用。"""
        return anyio.run(
            functools.partial(
                self.generate,
                prompt,
                system_prompt=system_prompt,
                cancellation=cancellation,
                settings=settings,
                mode=mode,
            )
        )

    def __repr__(self) -> str:
        return f"ClaudeCodeLanguageModel(model_id={self.model_id!r})"


class ClaudeCodeProvider:
    """Claude Code provider。

    持有一个进程槽位池：由它创建的所有模型共享并发上限。

    Example:
        provider = ClaudeCodeProvider(max_processes=2, settings={"timeout": 60})
        model = provider("opus")
    """

    def __init__(
        self,
        settings: SettingsInput = None,
        *,
        max_processes: int | None = _UNSET,
        runner: ProcessRunner | None = None,
    ) -> None:
        """初始化 provider。

        Args:
            settings: 默认设置（与环境变量配置合并）
            max_processes: 并发进程上限，None 表示不限制，缺省时取 CCP_MAX_PROCESSES
            runner: 进程启动器，缺省时按环境变量配置创建

        Raises:
            SettingsValidationError: 默认设置非法
            ValueError: max_processes 小于 1
        """
        config = get_config()
        base = {
            "cli_path": config.cli_path,
            "timeout": config.timeout,
            "malformed_record_policy": config.malformed_policy,
        }
        self.settings, self._warnings = ensure_valid_settings(_merge_settings(base, settings))
        for warning in self._warnings:
            logger.warning(warning)

        capacity = config.max_processes if max_processes is _UNSET else max_processes
        self._pool = ProcessSlotPool(capacity)
        self._invoker = ClaudeInvoker(
            self._pool,
            runner or ProcessRunner(term_timeout=config.term_timeout, kill_timeout=config.kill_timeout),
        )
        logger.debug(f"ClaudeCodeProvider created: pool={self._pool!r}")

    @property
    def pool(self) -> ProcessSlotPool:
        return self._pool

    def language_model(
        self,
        model_id: str = "sonnet",
        settings: SettingsInput = None,
    ) -> ClaudeCodeLanguageModel:
        """创建语言模型。

        Raises:
            ValueError: 模型 ID 为空
            SettingsValidationError: 设置非法
        """
        warnings = list(self._warnings)
        model_settings = self.settings
        if settings:
            model_settings, settings_warnings = ensure_valid_settings(
                _merge_settings(self.settings, settings)
            )
            for warning in settings_warnings:
                logger.warning(warning)
            warnings.extend(settings_warnings)
        return ClaudeCodeLanguageModel(model_id, model_settings, self._invoker, warnings)

    __call__ = language_model
    chat = language_model

    def built_in_tools(self) -> list[ToolDefinition]:
        return get_built_in_tools()

    def __repr__(self) -> str:
        return f"ClaudeCodeProvider(pool={self._pool!r})"


def create_claude_code(
    settings: SettingsInput = None,
    *,
    max_processes: int | None = _UNSET,
    runner: ProcessRunner | None = None,
) -> ClaudeCodeProvider:
    """创建 provider。"""
    return ClaudeCodeProvider(settings, max_processes=max_processes, runner=runner)
