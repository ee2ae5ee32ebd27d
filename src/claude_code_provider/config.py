"""CCP 环境变量配置管理。

环境变量:
    CCP_CLI_PATH: claude 可执行文件路径
        - 默认 "claude"

    CCP_MAX_PROCESSES: 同时运行的 CLI 进程上限
        - 默认 4
        - 0/none/unbounded = 不限制

    CCP_TIMEOUT: 单个请求超时（秒）
        - 默认 120
        - 0/none = 不限制

    CCP_TERM_TIMEOUT: SIGTERM 后等待退出的时间（秒）
        - 默认 2.0，限制在 0.1-30 秒范围

    CCP_KILL_TIMEOUT: SIGKILL 后等待退出的时间（秒）
        - 默认 1.0，限制在 0.1-30 秒范围

    CCP_MALFORMED_POLICY: 非法 stdout 记录的处理策略
        - fail = 终止请求并产出 ProtocolError (默认)
        - skip = 记录警告后跳过

    CCP_DEBUG: 调试模式
        - true/1/yes = 开启 (命令行输出包含统计信息)
        - false/0/no = 关闭 (默认)

    CCP_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .invokers.types import DEFAULT_TIMEOUT
from .parsers.base import MalformedRecordPolicy
from .runtime.process_runner import DEFAULT_KILL_TIMEOUT, DEFAULT_TERM_TIMEOUT
from .runtime.slot_pool import DEFAULT_MAX_PROCESSES

__all__ = ["Config", "load_config", "get_config", "reload_config"]

_UNBOUNDED_VALUES = ("0", "none", "unbounded", "unlimited")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_max_processes(value: str | None) -> int | None:
    """解析进程上限，None 表示不限制，无效值使用默认值。"""
    if value is None or not value.strip():
        return DEFAULT_MAX_PROCESSES
    value = value.strip().lower()
    if value in _UNBOUNDED_VALUES:
        return None
    try:
        count = int(value)
    except ValueError:
        return DEFAULT_MAX_PROCESSES
    return count if count > 0 else DEFAULT_MAX_PROCESSES


def _parse_timeout(value: str | None) -> float | None:
    """解析请求超时，None 表示不限制。"""
    if value is None or not value.strip():
        return DEFAULT_TIMEOUT
    value = value.strip().lower()
    if value in _UNBOUNDED_VALUES:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return DEFAULT_TIMEOUT
    return seconds if seconds > 0 else DEFAULT_TIMEOUT


def _parse_grace(value: str | None, default: float) -> float:
    """解析终止等待时间。"""
    if not value:
        return default
    try:
        seconds = float(value)
        return max(0.1, min(seconds, 30.0))  # 限制在 0.1-30 秒范围
    except ValueError:
        return default


@dataclass
class Config:
    """CCP 配置。

    Attributes:
        cli_path: claude 可执行文件路径
        max_processes: 同时运行的 CLI 进程上限（None = 不限制）
        timeout: 单个请求超时（秒，None = 不限制）
        term_timeout: SIGTERM 后等待时间（秒）
        kill_timeout: SIGKILL 后等待时间（秒）
        malformed_policy: 非法记录处理策略
        debug: 调试模式
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    cli_path: str = "claude"
    max_processes: int | None = DEFAULT_MAX_PROCESSES
    timeout: float | None = DEFAULT_TIMEOUT
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    malformed_policy: MalformedRecordPolicy = MalformedRecordPolicy.FAIL
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(cli_path={self.cli_path}, "
            f"max_processes={self.max_processes if self.max_processes is not None else 'unbounded'}, "
            f"timeout={self.timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"malformed_policy={self.malformed_policy.value}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "claude-code-provider"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"ccp_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CCP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        cli_path=os.environ.get("CCP_CLI_PATH", "").strip() or "claude",
        max_processes=_parse_max_processes(os.environ.get("CCP_MAX_PROCESSES")),
        timeout=_parse_timeout(os.environ.get("CCP_TIMEOUT")),
        term_timeout=_parse_grace(os.environ.get("CCP_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT),
        kill_timeout=_parse_grace(os.environ.get("CCP_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT),
        malformed_policy=MalformedRecordPolicy.from_string(os.environ.get("CCP_MALFORMED_POLICY")),
        debug=_parse_bool(os.environ.get("CCP_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
