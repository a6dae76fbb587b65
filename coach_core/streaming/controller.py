"""单次流式请求/响应周期的编排。

状态机::

    IDLE -> REQUESTING -> STREAMING -> COMPLETED
    IDLE -> REQUESTING -> FAILED
    REQUESTING | STREAMING -> FAILED | CANCELLED

每条用户消息对应一个 StreamSessionController，周期结束后即丢弃。
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional
from uuid import uuid4

from coach_core.config.settings import settings
from coach_core.domain.conversation import ChunkStream, KnowledgeBaseApi
from coach_core.domain.events import Done
from coach_core.domain.exceptions import BusinessError, ValidationError
from coach_core.infrastructure.logging.logger import log_event, logger
from coach_core.streaming.decoder import decode
from coach_core.streaming.frames import FrameBuffer, classify
from coach_core.streaming.reconciler import ConversationReconciler


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancelToken:
    """协作式取消标记，在每次等待下一个分块前检查。"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class StreamLease:
    """同一会话同一时刻只允许一个活动流。

    新的流获取租约时会取消该会话上仍在进行的旧流。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holders: Dict[str, CancelToken] = {}

    def acquire(self, session_id: str, token: CancelToken) -> Optional[CancelToken]:
        with self._lock:
            prior = self._holders.get(session_id)
            if prior is not None and prior is not token:
                prior.cancel()
            self._holders[session_id] = token
        return prior

    def release(self, session_id: str, token: CancelToken) -> None:
        with self._lock:
            if self._holders.get(session_id) is token:
                del self._holders[session_id]

    def holder(self, session_id: str) -> Optional[CancelToken]:
        with self._lock:
            return self._holders.get(session_id)


class StreamSessionController:
    def __init__(
        self,
        client: KnowledgeBaseApi,
        reconciler: ConversationReconciler,
        session_id: str,
        *,
        on_completed: Optional[Callable[[], None]] = None,
        cancel_token: Optional[CancelToken] = None,
        lease: Optional[StreamLease] = None,
        rollback_on_failure: Optional[bool] = None,
    ):
        self._client = client
        self._reconciler = reconciler
        self._session_id = session_id
        self._on_completed = on_completed
        self._token = cancel_token or CancelToken()
        self._lease = lease
        if rollback_on_failure is None:
            rollback_on_failure = settings.rollback_on_failure
        self._rollback_on_failure = rollback_on_failure
        self._state = StreamState.IDLE
        self._frames = FrameBuffer()
        self._user_id: Optional[str] = None
        self._assistant_id: Optional[str] = None
        self._error: Optional[BusinessError] = None
        self._log_ctx: Dict[str, Any] = {
            "stream_id": f"st-{uuid4().hex}",
            "session_id": session_id,
        }
        self._applied = 0
        self._source_exhausted = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def cancel_token(self) -> CancelToken:
        return self._token

    @property
    def assistant_id(self) -> Optional[str]:
        return self._assistant_id

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def error(self) -> Optional[BusinessError]:
        return self._error

    @property
    def source_exhausted(self) -> bool:
        """响应体是否被完整读完；收到结束标记提前停止时为 False。"""
        return self._source_exhausted

    def cancel(self) -> None:
        self._token.cancel()

    def run(self, content: str) -> StreamState:
        """执行完整的一次流式周期，返回终止状态；不会向外抛出传输异常。"""

        if self._state is not StreamState.IDLE:
            raise ValidationError(
                code="CONTROLLER_REUSED",
                message=f"stream controller already {self._state.value}",
            )
        if self._lease is not None:
            self._lease.acquire(self._session_id, self._token)
        try:
            return self._run(content)
        finally:
            if self._lease is not None:
                self._lease.release(self._session_id, self._token)

    # ---- 内部方法 ----

    def _run(self, content: str) -> StreamState:
        start_time = time.time()
        self._state = StreamState.REQUESTING
        self._user_id, self._assistant_id = self._reconciler.begin_exchange(content)
        self._log_ctx["assistant_turn_id"] = self._assistant_id

        try:
            if self._token.cancelled:
                return self._cancel()
            with self._client.open_chat_stream(self._session_id, content) as source:
                self._state = StreamState.STREAMING
                self._log(logging.INFO, "Stream opened")
                outcome = self._consume(source)
        except BusinessError as e:
            return self._fail(e)
        except Exception as e:  # noqa: BLE001 - 任何异常都只终止本次流
            logger.exception("Unexpected stream error", extra={"extra": self._log_ctx})
            return self._fail(BusinessError(code="STREAM_ERROR", message=str(e)))

        if outcome == "cancelled":
            return self._cancel()
        return self._complete(start_time, saw_done=(outcome == "done"))

    def _consume(self, source: ChunkStream) -> str:
        for chunk in source:
            if self._token.cancelled:
                return "cancelled"
            if self._apply_frames(self._frames.push(chunk)):
                return "done"
        self._source_exhausted = source.exhausted
        if self._token.cancelled:
            return "cancelled"
        if self._apply_frames(self._frames.flush()):
            return "done"
        return "eof"

    def _apply_frames(self, frames: Iterable[str]) -> bool:
        """按顺序应用一批帧；遇到结束标记立即返回 True，其后的帧全部丢弃。"""

        for frame in frames:
            classified = classify(frame)
            event = decode(classified.type, classified.data_lines, self._log_ctx)
            if event is None:
                continue
            self._reconciler.apply(self._assistant_id, event)
            if isinstance(event, Done):
                return True
            self._applied += 1
        return False

    def _complete(self, start_time: float, saw_done: bool) -> StreamState:
        self._reconciler.finish(self._assistant_id)
        self._state = StreamState.COMPLETED
        truncated = not saw_done and not self._source_exhausted
        self._log(
            logging.WARNING if truncated else logging.INFO,
            "Stream completed",
            saw_done=saw_done,
            source_exhausted=self._source_exhausted,
            events_applied=self._applied,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        if self._on_completed is not None:
            try:
                self._on_completed()
            except Exception as e:  # noqa: BLE001 - 刷新失败不影响本次结果
                self._log(logging.WARNING, "Post-stream refresh failed", error=str(e))
        return self._state

    def _fail(self, error: BusinessError) -> StreamState:
        self._error = error
        self._state = StreamState.FAILED
        self._log(
            logging.ERROR,
            "Stream failed",
            code=error.code,
            error=error.message,
            http_status=error.http_status,
            rolled_back=self._rollback_on_failure,
        )
        if self._rollback_on_failure:
            self._reconciler.discard([self._user_id, self._assistant_id])
        else:
            self._reconciler.finish(self._assistant_id)
        return self._state

    def _cancel(self) -> StreamState:
        self._reconciler.finish(self._assistant_id)
        self._state = StreamState.CANCELLED
        self._log(logging.INFO, "Stream cancelled", events_applied=self._applied)
        return self._state

    def _log(self, level: int, message: str, **fields: Any) -> None:
        log_event(level, message, self._log_ctx, **fields)
