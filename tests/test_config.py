"""Config 模块测试。

测试 CCP_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import os
from unittest import mock

import pytest

from claude_code_provider.config import Config, get_config, load_config, reload_config
from claude_code_provider.parsers.base import MalformedRecordPolicy


@pytest.fixture(autouse=True)
def _isolated_env(clean_env):
    yield


class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        config = load_config()
        assert config.cli_path == "claude"
        assert config.max_processes == 4
        assert config.timeout == 120.0
        assert config.term_timeout == 2.0
        assert config.kill_timeout == 1.0
        assert config.malformed_policy is MalformedRecordPolicy.FAIL
        assert config.debug is False
        assert config.log_debug is False
        assert config.log_file is None


class TestCliPath:
    """测试 CCP_CLI_PATH。"""

    def test_custom_path(self):
        with mock.patch.dict(os.environ, {"CCP_CLI_PATH": "/opt/bin/claude"}):
            assert load_config().cli_path == "/opt/bin/claude"

    def test_blank_means_default(self):
        with mock.patch.dict(os.environ, {"CCP_CLI_PATH": "  "}):
            assert load_config().cli_path == "claude"


class TestMaxProcesses:
    """测试 CCP_MAX_PROCESSES。"""

    @pytest.mark.parametrize("value,expected", [
        ("1", 1),
        ("16", 16),
        (" 8 ", 8),
        ("0", None),
        ("none", None),
        ("Unbounded", None),
        ("-3", 4),
        ("abc", 4),
        ("", 4),
    ])
    def test_parse(self, value: str, expected):
        with mock.patch.dict(os.environ, {"CCP_MAX_PROCESSES": value}):
            assert load_config().max_processes == expected


class TestTimeouts:
    """测试超时相关变量。"""

    @pytest.mark.parametrize("value,expected", [
        ("30", 30.0),
        ("0.5", 0.5),
        ("0", None),
        ("none", None),
        ("bad", 120.0),
        ("-1", 120.0),
    ])
    def test_request_timeout(self, value: str, expected):
        with mock.patch.dict(os.environ, {"CCP_TIMEOUT": value}):
            assert load_config().timeout == expected

    def test_term_timeout_clamped(self):
        """终止等待时间限制在 0.1-30 秒。"""
        with mock.patch.dict(os.environ, {"CCP_TERM_TIMEOUT": "100"}):
            assert load_config().term_timeout == 30.0
        with mock.patch.dict(os.environ, {"CCP_TERM_TIMEOUT": "0.01"}):
            assert load_config().term_timeout == 0.1

    def test_kill_timeout_invalid_uses_default(self):
        with mock.patch.dict(os.environ, {"CCP_KILL_TIMEOUT": "soon"}):
            assert load_config().kill_timeout == 1.0

    def test_kill_timeout_custom(self):
        with mock.patch.dict(os.environ, {"CCP_KILL_TIMEOUT": "3"}):
            assert load_config().kill_timeout == 3.0


class TestMalformedPolicy:
    """测试 CCP_MALFORMED_POLICY。"""

    @pytest.mark.parametrize("value,expected", [
        ("skip", MalformedRecordPolicy.SKIP),
        ("SKIP", MalformedRecordPolicy.SKIP),
        ("fail", MalformedRecordPolicy.FAIL),
        ("ignore", MalformedRecordPolicy.FAIL),
    ])
    def test_parse(self, value: str, expected):
        with mock.patch.dict(os.environ, {"CCP_MALFORMED_POLICY": value}):
            assert load_config().malformed_policy is expected


class TestDebugFlags:
    """测试 CCP_DEBUG 与 CCP_LOG_DEBUG。"""

    @pytest.mark.parametrize("value", ["true", "1", "yes", "ON"])
    def test_debug_true(self, value: str):
        with mock.patch.dict(os.environ, {"CCP_DEBUG": value}):
            assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_debug_false(self, value: str):
        with mock.patch.dict(os.environ, {"CCP_DEBUG": value}):
            assert load_config().debug is False

    def test_log_debug_sets_log_file(self):
        """开启日志调试时在临时目录下生成日志文件路径。"""
        with mock.patch.dict(os.environ, {"CCP_LOG_DEBUG": "1"}):
            config = load_config()
        assert config.log_debug is True
        assert config.log_file is not None
        assert "claude-code-provider" in config.log_file
        assert config.log_file.endswith(".log")


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_cached(self):
        assert get_config() is get_config()

    def test_reload_picks_up_changes(self):
        with mock.patch.dict(os.environ, {"CCP_MAX_PROCESSES": "2"}):
            config = reload_config()
            assert config.max_processes == 2
            assert get_config() is config

    def test_repr(self):
        text = repr(Config(max_processes=None))
        assert "max_processes=unbounded" in text
        assert "malformed_policy=fail" in text
