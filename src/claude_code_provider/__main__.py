"""Claude Code Provider 入口点。

支持: python -m claude_code_provider
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
