"""知识库后端 HTTP 客户端。

所有端点都挂在 settings.api_base_url 下：

- 会话: /sessions、/sessions/{id}
- 消息: /chat/messages（非流式）、settings.stream_path（流式，默认 /chat/stream）
- 分类: /categories
- 日记: /diaries、/diaries/{date}
- 文档: /documents、/documents/upload、/documents/{filename}

错误映射与其他 httpx 适配器保持一致：连接失败 -> NetworkError，429 -> RateLimitError，
其余 >=400 -> ApiError。
"""

import mimetypes
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx

from coach_core.config.settings import settings
from coach_core.domain.conversation import ConversationTurn
from coach_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from coach_core.domain.models import Category, DiaryEntry, DocumentInfo, Session
from coach_core.streaming.chunk_source import ChunkSource


class KnowledgeBaseClient:
    """KnowledgeBaseApi 的 httpx 实现。"""

    name = "knowledge-base"

    def __init__(self, cfg=settings):
        self._settings = cfg

    # ---- 会话 ----

    def list_sessions(self, keyword: Optional[str] = None, category_id: Optional[int] = None) -> List[Session]:
        data = self._request("GET", "/sessions", params={"keyword": keyword, "category_id": category_id})
        return [Session.from_dict(item) for item in data or []]

    def create_session(self, title: str) -> Session:
        data = self._request("POST", "/sessions", json={"title": title})
        return Session.from_dict(data)

    def delete_session(self, session_id: str) -> None:
        self._request("DELETE", f"/sessions/{quote(session_id, safe='')}")

    # ---- 消息 ----

    def list_messages(self, session_id: str) -> List[ConversationTurn]:
        data = self._request("GET", "/chat/messages", params={"session_id": session_id})
        return [ConversationTurn.from_dict(item) for item in data or []]

    @contextmanager
    def open_chat_stream(self, session_id: str, content: str) -> Iterator[ChunkSource]:
        """打开流式对话请求，产出只能消费一次的 ChunkSource。"""

        url = f"{self._base_url()}{self._settings.stream_path}"
        timeout = httpx.Timeout(self._settings.http_timeout, read=self._settings.stream_read_timeout)
        try:
            with httpx.Client(timeout=timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    url,
                    json={"session_id": session_id, "content": content},
                    headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
                ) as resp:
                    if not 200 <= resp.status_code < 300:
                        resp.read()
                        self._raise_for_status(resp)
                        raise ApiError(
                            code="UNEXPECTED_STATUS",
                            message=f"stream endpoint answered {resp.status_code}",
                            http_status=resp.status_code,
                        )
                    if resp.status_code == 204:
                        raise ApiError(code="EMPTY_STREAM", message="stream response has no body", http_status=204)
                    yield ChunkSource.from_response(resp)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 分类 ----

    def list_categories(self) -> List[Category]:
        data = self._request("GET", "/categories")
        return [Category.from_dict(item) for item in data or []]

    # ---- 日记 ----

    def list_diaries(self) -> List[DiaryEntry]:
        data = self._request("GET", "/diaries")
        return [DiaryEntry.from_dict(item) for item in data or []]

    def save_diary(self, date: str, content: str, mood: Optional[str] = None) -> DiaryEntry:
        payload: Dict[str, Any] = {"date": date, "content": content}
        if mood:
            payload["mood"] = mood
        data = self._request("POST", "/diaries", json=payload)
        return DiaryEntry.from_dict(data)

    def delete_diary(self, date: str) -> None:
        self._request("DELETE", f"/diaries/{quote(date, safe='')}")

    # ---- 文档 ----

    def list_documents(self) -> List[DocumentInfo]:
        data = self._request("GET", "/documents")
        return [DocumentInfo.from_dict(item) for item in data or []]

    def upload_document(self, path: str) -> DocumentInfo:
        file_path = Path(path)
        mime = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        with file_path.open("rb") as fh:
            data = self._request("POST", "/documents/upload", files={"file": (file_path.name, fh, mime)})
        if isinstance(data, dict) and "filename" in data:
            return DocumentInfo.from_dict(data)
        return DocumentInfo(filename=file_path.name, meta=data if isinstance(data, dict) else {})

    def delete_document(self, filename: str) -> None:
        self._request("DELETE", f"/documents/{quote(filename, safe='')}")

    # ---- 辅助方法 ----

    def _base_url(self) -> str:
        base = getattr(self._settings, "api_base_url", None)
        if not base:
            raise ValidationError(code="MISSING_API_BASE_URL", message="api_base_url not set")
        return base.rstrip("/")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        files: Any = None,
    ) -> Any:
        url = f"{self._base_url()}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.request(method, url, params=query or None, json=json, files=files)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="knowledge base rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
