"""按事件类型解码帧负载。

解码失败从不向外抛出：token 退回原始文本，sources 整帧丢弃（仅记录日志）。
结束标记既可以是原始的 [DONE]，也可以是 JSON 字符串 "[DONE]"，因此内容恰为 "[DONE]" 的 token 无法传输。
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from coach_core.domain.events import Done, SourcesAttached, StreamEvent, TitleChanged, Token
from coach_core.domain.models import Citation
from coach_core.infrastructure.logging.logger import log_event

DONE_SENTINEL = "[DONE]"

SOURCES_EVENT = "sources"
TITLE_EVENT = "title"


def decode(
    event_type: str,
    data_lines: Sequence[str],
    log_ctx: Optional[Dict[str, Any]] = None,
) -> Optional[StreamEvent]:
    """把一帧解码成 StreamEvent；返回 None 表示该帧没有可应用的内容。"""

    ctx = log_ctx or {}
    if event_type == TITLE_EVENT:
        return TitleChanged()
    payload = "\n".join(data_lines)
    if event_type == SOURCES_EVENT:
        return _decode_sources(payload, ctx)
    # 默认类型与未知类型都按 token 处理
    if not data_lines:
        return None
    return _decode_token(payload)


def _decode_token(payload: str) -> StreamEvent:
    if payload == DONE_SENTINEL:
        return Done()
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError:
        return Token(payload)
    if not isinstance(decoded, str):
        return Token(payload)
    if decoded == DONE_SENTINEL:
        return Done()
    return Token(decoded)


def _decode_sources(payload: str, ctx: Dict[str, Any]) -> Optional[StreamEvent]:
    try:
        records = json.loads(payload)
        if not isinstance(records, list):
            raise TypeError(f"sources payload must be a list, got {type(records).__name__}")
        citations: List[Citation] = [Citation.from_dict(r) for r in records]
    except (ValueError, TypeError) as e:
        log_event(
            logging.WARNING,
            "Dropped malformed sources frame",
            ctx,
            error=str(e),
            payload_preview=payload[:120],
        )
        return None
    return SourcesAttached(tuple(citations))
