"""领域层模型与协议。

包含：
- models: Citation / Session / Category / DiaryEntry / DocumentInfo 实体。
- conversation: ConversationTurn 及远端后端的 KnowledgeBaseApi 协议。
- events: 流式解码后的封闭事件类型。
- exceptions: 业务异常类型定义。
"""
