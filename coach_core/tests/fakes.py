"""测试用的内存版知识库后端。"""

from contextlib import contextmanager
from datetime import datetime, timezone

from coach_core.domain.conversation import ConversationTurn
from coach_core.domain.exceptions import ApiError
from coach_core.domain.models import Category, DiaryEntry, DocumentInfo, Session
from coach_core.streaming.chunk_source import ChunkSource


def utcnow():
    return datetime.now(timezone.utc)


class FakeApi:
    """内存版知识库后端。"""

    def __init__(self):
        self.sessions = [Session(id="s1", title="旧会话", updated_at=utcnow())]
        self.messages = {
            "s1": [ConversationTurn(id="m1", role="user", content="早", created_at=utcnow())],
        }
        self.stream_chunks = ['data: "你好"\n\n', "data: [DONE]\n\n"]
        self.stream_error = None
        self.fail_lists = False
        self.session_fetches = 0
        self.diaries = []
        self.documents = [DocumentInfo(filename="a.pdf", chunk_count=2)]
        self.uploaded = []

    def list_sessions(self, keyword=None, category_id=None):
        self.session_fetches += 1
        if self.fail_lists:
            raise ApiError(code="API_ERROR", message="down", http_status=503)
        items = self.sessions
        if category_id is not None:
            items = [s for s in items if s.category_id == category_id]
        if keyword:
            items = [s for s in items if keyword in s.title]
        return list(items)

    def create_session(self, title):
        session = Session(id=f"s{len(self.sessions) + 1}", title=title, updated_at=utcnow())
        self.sessions.append(session)
        return session

    def delete_session(self, session_id):
        if session_id not in {s.id for s in self.sessions}:
            raise ApiError(code="API_ERROR", message="not found", http_status=404)
        self.sessions = [s for s in self.sessions if s.id != session_id]

    def list_messages(self, session_id):
        return list(self.messages.get(session_id, []))

    @contextmanager
    def open_chat_stream(self, session_id, content):
        if self.stream_error is not None:
            raise self.stream_error
        yield ChunkSource(self.stream_chunks)

    def list_categories(self):
        return [Category(id=1, name="成长", color_code="#6366f1")]

    def list_diaries(self):
        return list(self.diaries)

    def save_diary(self, date, content, mood=None):
        entry = DiaryEntry(id=f"d-{date}", date=date, content=content, created_at=utcnow(), updated_at=utcnow(), mood=mood)
        self.diaries = [d for d in self.diaries if d.date != date] + [entry]
        return entry

    def delete_diary(self, date):
        self.diaries = [d for d in self.diaries if d.date != date]

    def list_documents(self):
        return list(self.documents)

    def upload_document(self, path):
        self.uploaded.append(path)
        info = DocumentInfo(filename=path.rsplit("/", 1)[-1], chunk_count=1)
        self.documents.append(info)
        return info

    def delete_document(self, filename):
        self.documents = [d for d in self.documents if d.filename != filename]

