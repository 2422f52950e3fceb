"""领域层模型与异常。

包含：
- models: Event / ReconciledResult / Turn / StreamRequest 等数据结构。
- exceptions: BusinessError 及流式错误分类。
"""
