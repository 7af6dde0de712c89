"""领域层模型。

包含：
- models: Message / ResponsePart / 凭据与请求体模型。
- conversation: 多轮对话的续接状态 Conversation。
- exceptions: 业务异常类型定义。
"""
