"""Coach Core 顶层包。

个人知识库对话助手的客户端核心，包括配置加载、领域模型、后端 HTTP 客户端、
流式响应协调引擎以及会话 / 日记 / 文档的应用状态。
"""

from coach_core.store import AppState
from coach_core.streaming import StreamSessionController, StreamState

__all__ = ["AppState", "StreamSessionController", "StreamState"]
