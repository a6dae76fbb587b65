"""应用全局状态。

对应前端的全局 store：会话 / 分类 / 消息 / 日记 / 文档。除流式对话外都是
对后端 API 的薄封装；拉取类动作失败时只记录日志、保持原状态不变。
"""

import logging
from datetime import date as date_cls
from pathlib import Path
from typing import Any, Dict, List, Optional

from coach_core.config.settings import settings
from coach_core.domain.conversation import KnowledgeBaseApi
from coach_core.domain.exceptions import BusinessError, ValidationError
from coach_core.domain.models import Category, DiaryEntry, DocumentInfo, Session
from coach_core.infrastructure.logging.logger import log_event
from coach_core.streaming.controller import StreamLease, StreamSessionController, StreamState
from coach_core.streaming.reconciler import ConversationReconciler

ACCEPTED_EXTENSIONS = (".pdf", ".epub", ".mobi", ".azw", ".azw3", ".txt", ".md")


class AppState:
    def __init__(self, client: KnowledgeBaseApi, cfg=settings):
        self._client = client
        self._settings = cfg
        self.sessions: List[Session] = []
        self.categories: List[Category] = []
        self.active_category_id: Optional[int] = None
        self.current_session_id: Optional[str] = None
        self.is_loading = False
        self.diaries: List[DiaryEntry] = []
        self.current_diary_date: str = date_cls.today().isoformat()
        self.documents: List[DocumentInfo] = []
        self.reconciler = ConversationReconciler(on_title_changed=self.fetch_sessions)
        self._lease = StreamLease()
        self._active: Dict[str, StreamSessionController] = {}

    @property
    def messages(self):
        return self.reconciler.turns

    # ---- 会话 ----

    def fetch_sessions(self, keyword: Optional[str] = None, category_id: Optional[int] = None) -> None:
        self.is_loading = True
        try:
            self.sessions = self._client.list_sessions(keyword=keyword, category_id=category_id)
        except BusinessError as e:
            self._log_failure("Failed to fetch sessions", e)
        finally:
            self.is_loading = False

    def create_session(self, title: Optional[str] = None) -> Optional[Session]:
        try:
            session = self._client.create_session(title or self._settings.default_session_title)
        except BusinessError as e:
            self._log_failure("Failed to create session", e)
            return None
        # 直接放到列表头部并选中，新会话没有历史消息
        self.sessions = [session] + self.sessions
        self.current_session_id = session.id
        self.reconciler.clear()
        return session

    def select_session(self, session_id: str) -> None:
        self.current_session_id = session_id
        self.fetch_messages(session_id)

    def delete_session(self, session_id: str) -> None:
        try:
            self._client.delete_session(session_id)
        except BusinessError as e:
            self._log_failure("Failed to delete session", e, session_id=session_id)
            return
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if self.current_session_id == session_id:
            self.current_session_id = None
            self.reconciler.clear()

    # ---- 消息 ----

    def fetch_messages(self, session_id: str) -> None:
        # 切换会话时先清空旧消息
        self.reconciler.clear()
        try:
            turns = self._client.list_messages(session_id)
        except BusinessError as e:
            self._log_failure("Failed to fetch messages", e, session_id=session_id)
            return
        if self.current_session_id == session_id:
            self.reconciler.replace_all(turns)

    def send_message_stream(self, content: str) -> Optional[StreamState]:
        """流式发送一条消息；没有选中会话或内容为空时直接返回 None。"""

        session_id = self.current_session_id
        if not session_id or not content.strip():
            return None
        controller = StreamSessionController(
            self._client,
            self.reconciler,
            session_id,
            on_completed=self.fetch_sessions,
            lease=self._lease,
            rollback_on_failure=self._settings.rollback_on_failure,
        )
        self._active[session_id] = controller
        try:
            return controller.run(content)
        finally:
            if self._active.get(session_id) is controller:
                del self._active[session_id]

    def cancel_stream(self, session_id: Optional[str] = None) -> bool:
        controller = self._active.get(session_id or self.current_session_id or "")
        if controller is None:
            return False
        controller.cancel()
        return True

    # ---- 分类 ----

    def fetch_categories(self) -> None:
        try:
            self.categories = self._client.list_categories()
        except BusinessError as e:
            self._log_failure("Failed to fetch categories", e)

    def set_category_filter(self, category_id: Optional[int]) -> None:
        self.active_category_id = category_id
        self.fetch_sessions(category_id=category_id or None)

    # ---- 日记 ----

    def fetch_diaries(self) -> None:
        try:
            self.diaries = self._client.list_diaries()
        except BusinessError as e:
            self._log_failure("Failed to fetch diaries", e)

    def set_diary_date(self, value: str) -> None:
        self.current_diary_date = date_cls.fromisoformat(value).isoformat()

    def current_diary(self) -> Optional[DiaryEntry]:
        return next((d for d in self.diaries if d.date == self.current_diary_date), None)

    def save_diary(self, date: str, content: str, mood: Optional[str] = None) -> Optional[DiaryEntry]:
        if not content.strip():
            return None
        try:
            entry = self._client.save_diary(date, content, mood)
        except BusinessError as e:
            self._log_failure("Failed to save diary", e, date=date)
            return None
        self.diaries = [d for d in self.diaries if d.date != entry.date] + [entry]
        self.diaries.sort(key=lambda d: d.date, reverse=True)
        return entry

    def delete_diary(self, date: str) -> None:
        try:
            self._client.delete_diary(date)
        except BusinessError as e:
            self._log_failure("Failed to delete diary", e, date=date)
            return
        self.diaries = [d for d in self.diaries if d.date != date]

    # ---- 文档 ----

    def fetch_documents(self) -> None:
        try:
            self.documents = self._client.list_documents()
        except BusinessError as e:
            self._log_failure("Failed to fetch documents", e)

    def upload_document(self, path: str) -> DocumentInfo:
        """校验格式与大小后上传；校验失败抛出 ValidationError，不发请求。"""

        file_path = Path(path)
        ext = file_path.suffix.lower()
        if ext not in ACCEPTED_EXTENSIONS:
            raise ValidationError(
                code="UNSUPPORTED_FORMAT",
                message=f"不支持的格式: {ext or '(无扩展名)'}。支持: {', '.join(ACCEPTED_EXTENSIONS)}",
            )
        size = file_path.stat().st_size
        if size > self._settings.max_upload_bytes:
            raise ValidationError(
                code="FILE_TOO_LARGE",
                message=f"文件过大 ({size / 1024 / 1024:.1f}MB)，上限 {self._settings.max_upload_bytes} 字节",
                size=size,
            )
        info = self._client.upload_document(str(file_path))
        self.fetch_documents()
        return info

    def delete_document(self, filename: str) -> None:
        try:
            self._client.delete_document(filename)
        except BusinessError as e:
            self._log_failure("Failed to delete document", e, filename=filename)
            return
        self.documents = [d for d in self.documents if d.filename != filename]

    def _log_failure(self, message: str, error: BusinessError, **fields: Any) -> None:
        log_event(
            logging.ERROR,
            message,
            {"code": error.code, "http_status": error.http_status},
            error=error.message,
            **fields,
        )
