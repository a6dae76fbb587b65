"""知识库实体数据模型。

本模块定义客户端与后端 REST API 之间共享的标准数据结构：

- Citation: 一条 RAG 引用来源（文件名 / 相关度 / 片段预览）。
- Session / Category: 会话与分类。
- DiaryEntry: 一篇日记。
- DocumentInfo: 知识库中已上传文档的摘要信息。

HTTP 客户端只负责把 JSON 转成这些模型，上层 store 只依赖这些模型。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional


def parse_timestamp(raw: Any) -> datetime:
    """解析后端返回的 ISO 时间串，缺失或非法时退回当前 UTC 时间。"""

    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str) and raw:
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Citation:
    """回答所引用的知识库片段，挂到助手消息上后不可再修改。"""

    filename: str
    score: float
    preview: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Citation":
        if not isinstance(data, Mapping):
            raise TypeError(f"citation record must be a mapping, got {type(data).__name__}")
        filename = data.get("filename")
        if not filename:
            raise ValueError("citation record missing filename")
        score = float(data.get("score") or 0.0)
        return cls(
            filename=str(filename),
            score=min(max(score, 0.0), 1.0),
            preview=str(data.get("preview") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"filename": self.filename, "score": self.score, "preview": self.preview}


@dataclass
class Session:
    id: str
    title: str
    updated_at: datetime
    summary: Optional[str] = None
    is_pinned: bool = False
    category_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            updated_at=parse_timestamp(data.get("updated_at")),
            summary=data.get("summary"),
            is_pinned=bool(data.get("is_pinned", False)),
            category_id=data.get("category_id"),
        )


@dataclass
class Category:
    id: int
    name: str
    color_code: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Category":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            color_code=data.get("color_code") or "",
        )


@dataclass
class DiaryEntry:
    """一篇日记，date 为 YYYY-MM-DD，是日记在后端的主键。"""

    id: str
    date: str
    content: str
    created_at: datetime
    updated_at: datetime
    mood: Optional[str] = None
    tags: Optional[List[str]] = None
    is_vectorized: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DiaryEntry":
        return cls(
            id=str(data["id"]),
            date=str(data["date"]),
            content=data.get("content") or "",
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            mood=data.get("mood"),
            tags=list(data["tags"]) if data.get("tags") else None,
            is_vectorized=bool(data.get("is_vectorized", False)),
        )


@dataclass
class DocumentInfo:
    filename: str
    chunk_count: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentInfo":
        meta = {k: v for k, v in data.items() if k not in {"filename", "chunk_count"}}
        return cls(
            filename=str(data["filename"]),
            chunk_count=int(data.get("chunk_count") or 0),
            meta=meta,
        )
