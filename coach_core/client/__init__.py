"""远端知识库 API 集成层。

- http_client: 基于 httpx 的 KnowledgeBaseClient（REST 与流式端点）。
"""

from coach_core.config.settings import settings
from coach_core.client.http_client import KnowledgeBaseClient
from coach_core.domain.conversation import KnowledgeBaseApi


def create_client() -> KnowledgeBaseApi:
    """按当前配置创建默认的后端客户端。"""

    return KnowledgeBaseClient(settings)
