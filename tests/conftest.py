"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import itertools
import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_CLAUDE = FIXTURES_DIR / "fake_claude.py"


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def fake_claude(tmp_path: Path) -> Callable[..., str]:
    """假 claude 可执行文件工厂。

    每次调用写出一个场景文件和一个包装脚本，返回脚本路径，
    可直接作为 settings.cli_path 使用。

    Example:
        cli = fake_claude(
            {"emit": {"type": "text", "text": "Hel"}},
            {"emit": {"type": "done"}},
        )
    """
    if sys.platform == "win32":
        pytest.skip("fake claude wrapper requires a POSIX shell")

    counter = itertools.count(1)

    def factory(*steps: dict[str, Any]) -> str:
        index = next(counter)
        scenario = tmp_path / f"scenario_{index}.json"
        scenario.write_text(json.dumps({"steps": list(steps)}), encoding="utf-8")

        script = tmp_path / f"fake_claude_{index}"
        script.write_text(
            "#!/bin/sh\n"
            f'exec "{sys.executable}" "{FAKE_CLAUDE}" --scenario "{scenario}" "$@"\n',
            encoding="utf-8",
        )
        script.chmod(0o755)
        return str(script)

    return factory


@pytest.fixture
def clean_env():
    """清除所有 CCP_* 环境变量并重新加载全局配置。"""
    from claude_code_provider.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("CCP_")}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()
