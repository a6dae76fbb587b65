"""流式响应协调引擎。

数据流严格线性：ChunkSource -> FrameBuffer -> classify -> decode ->
ConversationReconciler，由 StreamSessionController 串起一次完整的请求/响应周期。
"""

from coach_core.streaming.chunk_source import ChunkSource
from coach_core.streaming.controller import CancelToken, StreamLease, StreamSessionController, StreamState
from coach_core.streaming.decoder import DONE_SENTINEL, decode
from coach_core.streaming.frames import ClassifiedFrame, FrameBuffer, classify
from coach_core.streaming.reconciler import ConversationChange, ConversationReconciler

__all__ = [
    "CancelToken",
    "ChunkSource",
    "ClassifiedFrame",
    "ConversationChange",
    "ConversationReconciler",
    "DONE_SENTINEL",
    "FrameBuffer",
    "StreamLease",
    "StreamSessionController",
    "StreamState",
    "classify",
    "decode",
]
