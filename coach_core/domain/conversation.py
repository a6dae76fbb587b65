from contextlib import AbstractContextManager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Protocol

from .models import Category, Citation, DiaryEntry, DocumentInfo, Session, format_timestamp, parse_timestamp


Role = Literal["user", "assistant"]


@dataclass
class ConversationTurn:
    """消息列表中的一条对话。

    - content: 流式进行中只追加，之后由权威拉取整条替换。
    - sources: 仅助手消息可能携带；后到的一组替换先到的一组。
    - pending: 乐观插入、尚未被后端确认的占位消息。
    """

    id: str
    role: Role
    content: str
    created_at: datetime
    sources: Optional[List[Citation]] = None
    pending: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationTurn":
        raw_sources = data.get("sources")
        sources = [Citation.from_dict(s) for s in raw_sources] if raw_sources else None
        return cls(
            id=str(data["id"]),
            role=data.get("role") or "assistant",
            content=data.get("content") or "",
            created_at=parse_timestamp(data.get("created_at")),
            sources=sources,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": format_timestamp(self.created_at),
            "sources": [s.to_dict() for s in self.sources] if self.sources is not None else None,
            "pending": self.pending,
        }

    def copy(self) -> "ConversationTurn":
        return replace(self, sources=list(self.sources) if self.sources is not None else None)


class ChunkStream(Protocol):
    """一次流式响应的分块来源，只能消费一次。"""

    @property
    def exhausted(self) -> bool:
        ...

    def __iter__(self) -> Iterator[str]:
        ...


class KnowledgeBaseApi(Protocol):
    """远端知识库后端的契约。

    store 与流式控制器只依赖此协议，测试中可以用内存假实现替换 HTTP 客户端。
    """

    def list_sessions(self, keyword: Optional[str] = None, category_id: Optional[int] = None) -> List[Session]:
        ...

    def create_session(self, title: str) -> Session:
        ...

    def delete_session(self, session_id: str) -> None:
        ...

    def list_messages(self, session_id: str) -> List[ConversationTurn]:
        ...

    def open_chat_stream(self, session_id: str, content: str) -> AbstractContextManager[ChunkStream]:
        ...

    def list_categories(self) -> List[Category]:
        ...

    def list_diaries(self) -> List[DiaryEntry]:
        ...

    def save_diary(self, date: str, content: str, mood: Optional[str] = None) -> DiaryEntry:
        ...

    def delete_diary(self, date: str) -> None:
        ...

    def list_documents(self) -> List[DocumentInfo]:
        ...

    def upload_document(self, path: str) -> DocumentInfo:
        ...

    def delete_document(self, filename: str) -> None:
        ...
