from contextlib import contextmanager

import pytest

from coach_core.domain.exceptions import ApiError, StreamInterruptedError, ValidationError
from coach_core.domain.models import Citation
from coach_core.streaming.chunk_source import ChunkSource
from coach_core.streaming.controller import CancelToken, StreamLease, StreamSessionController, StreamState
from coach_core.streaming.reconciler import ConversationReconciler


class FakeApi:
    """只实现 open_chat_stream 的假后端。"""

    def __init__(self, chunks=(), open_error=None):
        self._chunks = chunks
        self._open_error = open_error
        self.calls = []

    @contextmanager
    def open_chat_stream(self, session_id, content):
        self.calls.append((session_id, content))
        if self._open_error is not None:
            raise self._open_error
        yield ChunkSource(self._chunks)


def _run(chunks, **kwargs):
    rec = ConversationReconciler()
    refreshes = []
    controller = StreamSessionController(
        FakeApi(chunks),
        rec,
        "s1",
        on_completed=lambda: refreshes.append(1),
        **kwargs,
    )
    state = controller.run("question")
    return controller, rec, state, refreshes


def test_concrete_scenario():
    chunks = [
        "event: sources\nda",
        'ta: [{"filename":"a.pdf","score":0.9,"preview":"x"}]\n\n',
        'data: "Hel',
        'lo"\n\n',
        'data: "[DONE]"\n\n',
    ]
    controller, rec, state, refreshes = _run(chunks)
    assert state is StreamState.COMPLETED
    turn = rec.get(controller.assistant_id)
    assert turn.content == "Hello"
    assert turn.sources == [Citation("a.pdf", 0.9, "x")]
    assert not turn.pending
    assert refreshes == [1]


def test_frames_after_sentinel_never_applied():
    chunks = ['data: "a"\n\ndata: [DONE]\n\ndata: "b"\n\n', 'data: "c"\n\n']
    controller, rec, state, _ = _run(chunks)
    assert state is StreamState.COMPLETED
    assert rec.get(controller.assistant_id).content == "a"


def test_sentinel_stops_reading_further_chunks():
    pulled = []

    def chunks():
        for chunk in ['data: "a"\n\n', "data: [DONE]\n\n", 'data: "late"\n\n']:
            pulled.append(chunk)
            yield chunk

    controller, rec, state, _ = _run(chunks())
    assert state is StreamState.COMPLETED
    assert len(pulled) == 2
    assert rec.get(controller.assistant_id).content == "a"


def test_malformed_sources_do_not_halt_stream():
    chunks = [
        'event: sources\ndata: [{"filename":"a.pdf","score":0.5,"preview":"p"}]\n\n',
        'data: "x"\n\n',
        "event: sources\ndata: [{oops\n\n",
        'data: "y"\n\n',
        "data: [DONE]\n\n",
    ]
    controller, rec, state, _ = _run(chunks)
    assert state is StreamState.COMPLETED
    turn = rec.get(controller.assistant_id)
    assert turn.content == "xy"
    assert turn.sources == [Citation("a.pdf", 0.5, "p")]


def test_end_of_stream_without_sentinel_completes():
    controller, rec, state, refreshes = _run(['data: "par', 'tial"\n\ndata: "!"'])
    assert state is StreamState.COMPLETED
    assert rec.get(controller.assistant_id).content == "partial!"
    assert refreshes == [1]


def test_title_event_continues_stream():
    rec = ConversationReconciler()
    titles = []
    rec.on_title_changed = lambda: titles.append(1)
    chunks = ['data: "a"\n\nevent: title\ndata: new\n\ndata: "b"\n\ndata: [DONE]\n\n']
    controller = StreamSessionController(FakeApi(chunks), rec, "s1")
    assert controller.run("q") is StreamState.COMPLETED
    assert titles == [1]
    assert rec.get(controller.assistant_id).content == "ab"


def test_multibyte_characters_split_across_byte_chunks():
    raw = 'data: "你好"\n\ndata: [DONE]\n\n'.encode("utf-8")
    chunks = [raw[i:i + 1] for i in range(len(raw))]
    controller, rec, state, _ = _run(chunks)
    assert state is StreamState.COMPLETED
    assert rec.get(controller.assistant_id).content == "你好"


def test_open_failure_rolls_back_placeholders():
    rec = ConversationReconciler()
    api = FakeApi(open_error=ApiError(code="API_ERROR", message="boom", http_status=500))
    refreshes = []
    controller = StreamSessionController(
        api, rec, "s1", on_completed=lambda: refreshes.append(1), rollback_on_failure=True
    )
    assert controller.run("q") is StreamState.FAILED
    assert rec.turns == []
    assert controller.error.http_status == 500
    assert refreshes == []


def test_failure_without_rollback_keeps_partial_state():
    def chunks():
        yield 'data: "part"\n\n'
        raise StreamInterruptedError(code="STREAM_INTERRUPTED", message="connection reset")

    controller, rec, state, refreshes = _run(chunks(), rollback_on_failure=False)
    assert state is StreamState.FAILED
    assert len(rec.turns) == 2
    turn = rec.get(controller.assistant_id)
    assert turn.content == "part"
    assert not turn.pending
    assert refreshes == []


def test_unexpected_error_never_escapes():
    def chunks():
        yield 'data: "a"\n\n'
        raise RuntimeError("decoder exploded")

    controller, rec, state, _ = _run(chunks(), rollback_on_failure=True)
    assert state is StreamState.FAILED
    assert controller.error.code == "STREAM_ERROR"
    assert rec.turns == []


def test_cancel_mid_stream_keeps_partial_content():
    holder = {}

    def chunks():
        yield 'data: "a"\n\n'
        holder["controller"].cancel()
        yield 'data: "b"\n\n'

    rec = ConversationReconciler()
    refreshes = []
    controller = StreamSessionController(FakeApi(chunks()), rec, "s1", on_completed=lambda: refreshes.append(1))
    holder["controller"] = controller
    assert controller.run("q") is StreamState.CANCELLED
    assert rec.get(controller.assistant_id).content == "a"
    assert rec.is_closed(controller.assistant_id)
    assert refreshes == []


def test_cancelled_before_open_skips_request():
    token = CancelToken()
    token.cancel()
    api = FakeApi(['data: "a"\n\n'])
    controller = StreamSessionController(api, ConversationReconciler(), "s1", cancel_token=token)
    assert controller.run("q") is StreamState.CANCELLED
    assert api.calls == []


def test_lease_cancels_prior_stream_on_same_session():
    lease = StreamLease()
    prior = CancelToken()
    lease.acquire("s1", prior)
    other = CancelToken()
    lease.acquire("s2", other)

    controller = StreamSessionController(
        FakeApi(["data: [DONE]\n\n"]), ConversationReconciler(), "s1", lease=lease
    )
    assert controller.run("q") is StreamState.COMPLETED
    assert prior.cancelled
    assert not other.cancelled
    # 自己的租约在结束后释放，旧持有者已被替换
    assert lease.holder("s1") is None
    assert lease.holder("s2") is other


def test_controller_cannot_be_reused():
    controller, _, _, _ = _run(["data: [DONE]\n\n"])
    with pytest.raises(ValidationError):
        controller.run("again")


def test_refresh_failure_does_not_change_outcome():
    def refresh():
        raise RuntimeError("sessions endpoint down")

    controller = StreamSessionController(
        FakeApi(["data: [DONE]\n\n"]), ConversationReconciler(), "s1", on_completed=refresh
    )
    assert controller.run("q") is StreamState.COMPLETED


def test_chunk_source_is_not_restartable():
    source = ChunkSource(["a", "b"])
    assert list(source) == ["a", "b"]
    assert source.exhausted
    with pytest.raises(RuntimeError):
        list(source)


def test_source_exhausted_tracks_how_stream_ended():
    controller, _, _, _ = _run(['data: "a"\n\n'])
    assert controller.source_exhausted

    controller, _, _, _ = _run(['data: "a"\n\ndata: [DONE]\n\n', 'data: "b"\n\n'])
    assert not controller.source_exhausted


class TruncatedStream:
    """迭代结束但未标记读完的分块来源。"""

    exhausted = False

    def __init__(self, chunks):
        self._chunks = chunks

    def __iter__(self):
        return iter(self._chunks)


def test_iteration_end_without_exhaustion_is_reported():
    class Api:
        @contextmanager
        def open_chat_stream(self, session_id, content):
            yield TruncatedStream(['data: "a"\n\n'])

    rec = ConversationReconciler()
    controller = StreamSessionController(Api(), rec, "s1")
    assert controller.run("q") is StreamState.COMPLETED
    assert not controller.source_exhausted
    assert rec.get(controller.assistant_id).content == "a"
