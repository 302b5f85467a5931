"""领域层模型与异常。

包含：
- models: Session / AuthUser / Conversation / Message / Segment 等数据模型。
- exceptions: ClientError 异常体系与 ErrorKind 分类。
"""
