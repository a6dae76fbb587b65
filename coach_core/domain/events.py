"""流式对话事件。

PayloadDecoder 与 ConversationReconciler 之间的唯一契约。事件类型是封闭的：
解码层把字符串类型标签一次性转换成下列四种之一，之后不再做任何字符串比较。
"""

from dataclasses import dataclass
from typing import Tuple, Union

from coach_core.domain.models import Citation


@dataclass(frozen=True)
class Token:
    """助手回答的一段增量文本。"""

    delta: str


@dataclass(frozen=True)
class SourcesAttached:
    """整组替换当前助手消息的引用来源。"""

    citations: Tuple[Citation, ...]


@dataclass(frozen=True)
class TitleChanged:
    """后端已更新会话标题，需要刷新会话列表。"""


@dataclass(frozen=True)
class Done:
    """流结束标记。"""


StreamEvent = Union[Token, SourcesAttached, TitleChanged, Done]
