"""对话状态协调器。

ConversationReconciler 独占有序消息列表，是渲染层唯一观察的对象：

- begin_exchange: 乐观插入用户消息与空内容的助手占位消息。
- apply: 把解码后的事件应用到指定助手消息上。
- finish / discard: 流结束时确认占位消息，或在失败时撤回。
- replace_all: 用后端拉取的权威列表整体替换。

每次变更都会同步通知订阅者（ConversationChange），订阅者异常只记录日志。
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Literal, Optional, Set, Tuple
from uuid import uuid4

from coach_core.domain.conversation import ConversationTurn
from coach_core.domain.events import Done, SourcesAttached, StreamEvent, TitleChanged, Token
from coach_core.infrastructure.logging.logger import log_event, logger

ChangeKind = Literal["append", "update", "remove", "reset"]


@dataclass(frozen=True)
class ConversationChange:
    kind: ChangeKind
    turn_id: Optional[str] = None


Listener = Callable[[ConversationChange], None]


class ConversationReconciler:
    def __init__(self, on_title_changed: Optional[Callable[[], None]] = None):
        self._turns: List[ConversationTurn] = []
        self._index: Dict[str, int] = {}
        self._closed: Set[str] = set()
        # 助手占位消息 id -> 对应的用户消息 id
        self._pairs: Dict[str, str] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self.on_title_changed = on_title_changed

    # ---- 读取 ----

    @property
    def turns(self) -> List[ConversationTurn]:
        return self._turns

    def get(self, turn_id: str) -> Optional[ConversationTurn]:
        with self._lock:
            idx = self._index.get(turn_id)
            return self._turns[idx] if idx is not None else None

    def snapshot(self) -> Tuple[ConversationTurn, ...]:
        with self._lock:
            return tuple(t.copy() for t in self._turns)

    def is_closed(self, turn_id: str) -> bool:
        return turn_id in self._closed

    # ---- 订阅 ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 变更 ----

    def begin_exchange(self, content: str) -> Tuple[str, str]:
        """追加一对乐观占位消息，返回 (用户消息 id, 助手消息 id)。"""

        now = datetime.now(timezone.utc)
        user_turn = ConversationTurn(
            id=f"tmp-{uuid4().hex}",
            role="user",
            content=content,
            created_at=now,
            pending=True,
        )
        assistant_turn = ConversationTurn(
            id=f"tmp-{uuid4().hex}",
            role="assistant",
            content="",
            created_at=now,
            pending=True,
        )
        with self._lock:
            self._append(user_turn)
            self._append(assistant_turn)
            self._pairs[assistant_turn.id] = user_turn.id
        self._notify(ConversationChange("append", user_turn.id))
        self._notify(ConversationChange("append", assistant_turn.id))
        return user_turn.id, assistant_turn.id

    def apply(self, turn_id: str, event: StreamEvent) -> bool:
        """把一个事件应用到 turn_id 对应的助手消息；返回是否实际生效。"""

        title_changed = False
        with self._lock:
            if turn_id in self._closed:
                logger.debug("Ignored event for closed turn %s", turn_id)
                return False
            if isinstance(event, TitleChanged):
                title_changed = True
            elif isinstance(event, Done):
                self._closed.add(turn_id)
                return True
            else:
                idx = self._index.get(turn_id)
                if idx is None:
                    logger.debug("Ignored event for unknown turn %s", turn_id)
                    return False
                turn = self._turns[idx]
                if isinstance(event, Token):
                    turn.content += event.delta
                elif isinstance(event, SourcesAttached):
                    turn.sources = list(event.citations)
                else:
                    raise TypeError(f"Unsupported stream event: {event!r}")
        # 回调与通知在锁外执行
        if title_changed:
            self._fire_title_changed(turn_id)
        else:
            self._notify(ConversationChange("update", turn_id))
        return True

    def finish(self, turn_id: str) -> None:
        """关闭助手消息并把它及配对的用户消息标记为已确认。"""

        with self._lock:
            self._closed.add(turn_id)
            touched = [tid for tid in (self._pairs.pop(turn_id, None), turn_id) if tid]
            for tid in touched:
                idx = self._index.get(tid)
                if idx is not None:
                    self._turns[idx].pending = False
        for tid in touched:
            self._notify(ConversationChange("update", tid))

    def discard(self, turn_ids: Iterable[str]) -> None:
        """撤回占位消息（失败回滚）。"""

        removed: List[str] = []
        with self._lock:
            doomed = set(turn_ids)
            for tid in doomed:
                self._closed.add(tid)
                self._pairs.pop(tid, None)
            kept = [t for t in self._turns if t.id not in doomed]
            removed = [t.id for t in self._turns if t.id in doomed]
            self._turns[:] = kept
            self._reindex()
        for tid in removed:
            self._notify(ConversationChange("remove", tid))

    def replace_all(self, turns: Iterable[ConversationTurn]) -> None:
        with self._lock:
            self._turns[:] = list(turns)
            self._closed.clear()
            self._pairs.clear()
            self._reindex()
        self._notify(ConversationChange("reset"))

    def clear(self) -> None:
        self.replace_all([])

    # ---- 内部方法 ----

    def _append(self, turn: ConversationTurn) -> None:
        self._index[turn.id] = len(self._turns)
        self._turns.append(turn)

    def _reindex(self) -> None:
        self._index = {t.id: i for i, t in enumerate(self._turns)}

    def _fire_title_changed(self, turn_id: str) -> None:
        if self.on_title_changed is None:
            return
        try:
            self.on_title_changed()
        except Exception as e:  # noqa: BLE001 - 回调失败不能中断流
            log_event(logging.WARNING, "Title refresh callback failed", {"turn_id": turn_id}, error=str(e))

    def _notify(self, change: ConversationChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:  # noqa: BLE001 - 订阅者异常不能影响状态
                log_event(
                    logging.WARNING,
                    "Conversation listener failed",
                    {"turn_id": change.turn_id},
                    kind=change.kind,
                    error=str(e),
                )
