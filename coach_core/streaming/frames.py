"""事件帧切分与分类。

线上格式（帧之间以空行分隔）::

    event: sources
    data: [{"filename": "a.pdf", "score": 0.9, "preview": "..."}]

    data: "Hel"

没有 event 行的帧默认为 "message" 类型。
"""

from dataclasses import dataclass, field
from typing import List

FRAME_DELIMITER = "\n\n"
DEFAULT_EVENT_TYPE = "message"

_EVENT_MARKER = "event:"
_DATA_MARKER = "data:"


class FrameBuffer:
    """按空行把任意切分的分块重新拼成完整帧。

    缓冲区始终只保存“已收到但尚未组成完整帧”的后缀；最后一段不论是否为空
    都会留待下一个分块，不做猜测。
    """

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def push(self, chunk_text: str) -> List[str]:
        # 整体重新归一化，保证跨分块的 "\r" + "\n" 也能合并
        text = (self._pending + chunk_text).replace("\r\n", "\n")
        parts = text.split(FRAME_DELIMITER)
        self._pending = parts.pop()
        return parts

    def flush(self) -> List[str]:
        """流已结束时取出残留片段；只有包含 data 行时才当作一帧。"""

        tail, self._pending = self._pending, ""
        if any(line.startswith(_DATA_MARKER) for line in tail.split("\n")):
            return [tail]
        return []


@dataclass
class ClassifiedFrame:
    type: str = DEFAULT_EVENT_TYPE
    data_lines: List[str] = field(default_factory=list)


def classify(frame: str) -> ClassifiedFrame:
    """解析一帧的各行：event 行决定类型，data 行按顺序收集，其余行忽略。"""

    result = ClassifiedFrame()
    for raw_line in frame.split("\n"):
        line = raw_line.rstrip("\r")
        if line.startswith(_EVENT_MARKER):
            result.type = line[len(_EVENT_MARKER):].strip() or DEFAULT_EVENT_TYPE
        elif line.startswith(_DATA_MARKER):
            value = line[len(_DATA_MARKER):]
            if value.startswith(" "):
                value = value[1:]
            result.data_lines.append(value)
    return result
