"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话日志消息 Message 及 KeyValueStore 持久化协议。
- exceptions: 业务异常类型定义。
"""
