"""流式响应分块来源。"""

import codecs
from typing import Iterable, Iterator, Union

import httpx

from coach_core.domain.exceptions import StreamInterruptedError


class ChunkSource:
    """把一个打开的流式响应包装成惰性、有限、不可重启的文本分块序列。

    bytes 分块使用增量 UTF-8 解码器，多字节字符被切在两个分块之间时也能正确拼回。
    迭代自然结束后 exhausted 才为 True，用来区分“正常读完”与“中途异常”。
    """

    def __init__(self, chunks: Iterable[Union[bytes, str]], encoding: str = "utf-8"):
        self._chunks = chunks
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._started = False
        self._exhausted = False

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ChunkSource":
        return cls(_iter_response_bytes(response))

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __iter__(self) -> Iterator[str]:
        if self._started:
            raise RuntimeError("ChunkSource can only be consumed once")
        self._started = True
        for raw in self._chunks:
            text = self._decoder.decode(raw) if isinstance(raw, bytes) else raw
            if text:
                yield text
        tail = self._decoder.decode(b"", final=True)
        if tail:
            yield tail
        self._exhausted = True


def _iter_response_bytes(response: httpx.Response) -> Iterator[bytes]:
    try:
        yield from response.iter_bytes()
    except (httpx.HTTPError, httpx.StreamError) as e:
        raise StreamInterruptedError(code="STREAM_INTERRUPTED", message=str(e))
