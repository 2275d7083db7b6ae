"""领域层模型与协议。

包含：
- models: 统一的 Turn / Part / ModelRequest / ModelResponse 模型。
- history: 按 user 轮次计数的有界对话历史。
- wine: 酒款、暂存草稿与库存检索条件。
- exceptions: 业务异常类型定义。
"""
