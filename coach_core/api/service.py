"""对外 API 服务模块。

提供简化的函数接口供宿主应用（桌面 UI、脚本等）调用。
"""

from typing import Optional, Dict, Any

from coach_core.client import create_client
from coach_core.domain.models import format_timestamp
from coach_core.store.app_state import AppState
from coach_core.infrastructure.logging.logger import logger


_state: Optional[AppState] = None


def get_default_state() -> AppState:
    """获取默认的 AppState 实例（单例）。"""
    global _state
    if _state is None:
        _state = AppState(create_client())
    return _state


def stream_chat(session_id: str, content: str) -> Dict[str, Any]:
    """在指定会话中流式发送一条消息。

    Args:
        session_id: 会话ID
        content: 用户输入内容

    Returns:
        包含会话ID、终止状态和当前消息列表的字典
    """
    state = get_default_state()
    if state.current_session_id != session_id:
        state.select_session(session_id)
    result = state.send_message_stream(content)
    status = result.value if result is not None else "skipped"
    if status != "completed":
        logger.warning(f"Stream ended with status {status}", extra={"extra": {
            "session_id": session_id,
            "status": status,
        }})
    return {
        "session_id": session_id,
        "status": status,
        "messages": [t.to_dict() for t in state.reconciler.snapshot()],
    }


def list_sessions(keyword: Optional[str] = None) -> list[Dict[str, Any]]:
    """列出会话。

    Returns:
        会话列表，每项包含 id, title, summary, is_pinned, category_id, updated_at
    """
    state = get_default_state()
    state.fetch_sessions(keyword=keyword)
    return [
        {
            "id": s.id,
            "title": s.title,
            "summary": s.summary,
            "is_pinned": s.is_pinned,
            "category_id": s.category_id,
            "updated_at": format_timestamp(s.updated_at),
        }
        for s in state.sessions
    ]


def get_session_messages(session_id: str) -> list[Dict[str, Any]]:
    state = get_default_state()
    state.select_session(session_id)
    return [t.to_dict() for t in state.reconciler.snapshot()]
