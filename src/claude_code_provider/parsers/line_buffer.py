"""行缓冲器。

claude-code-provider parsers v0.1.0

将任意边界的 stdout 字节块重组为完整的换行分隔记录。
在字节层面切分后再解码，跨块拆开的多字节 UTF-8 字符不会被破坏。
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_MAX_LINE_BYTES",
    "LineBuffer",
    "LineTooLongError",
]

# 单条记录上限（大工具结果可能达到数 MB）
DEFAULT_MAX_LINE_BYTES = 16 * 1024 * 1024


class LineTooLongError(ValueError):
    """未结束的行超过上限。

    Attributes:
        size: 当前累计字节数
        limit: 上限
    """

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Line exceeds {limit} bytes (got {size} bytes without newline)")


class LineBuffer:
    """换行分隔记录重组器。

    Example:
        buffer = LineBuffer()
        for line in buffer.feed(b'{"type":"te'):
            ...  # 不产出
        for line in buffer.feed(b'xt"}\\n'):
            ...  # 产出 '{"type":"text"}'
        tail = buffer.flush()  # EOF 时取出残留片段
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self._pending = bytearray()
        self._max_line_bytes = max_line_bytes

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    def feed(self, chunk: bytes) -> list[str]:
        """追加字节块，返回其中所有完整行（去掉行尾换行和回车）。

        Raises:
            LineTooLongError: 残留片段超过上限
        """
        if not chunk:
            return []
        self._pending.extend(chunk)

        lines: list[str] = []
        start = 0
        while True:
            end = self._pending.find(b"\n", start)
            if end == -1:
                break
            line = bytes(self._pending[start:end])
            start = end + 1
            lines.append(self._decode(line))
        if start:
            del self._pending[:start]

        if len(self._pending) > self._max_line_bytes:
            size = len(self._pending)
            self._pending.clear()
            raise LineTooLongError(size, self._max_line_bytes)
        return lines

    def flush(self) -> str | None:
        """EOF 时取出未以换行结束的最后一段，空白则返回 None。"""
        if not self._pending:
            return None
        line = self._decode(bytes(self._pending))
        self._pending.clear()
        return line if line.strip() else None

    @staticmethod
    def _decode(line: bytes) -> str:
        if line.endswith(b"\r"):
            line = line[:-1]
        return line.decode("utf-8", errors="replace")
