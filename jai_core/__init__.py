"""Jai 聊天客户端核心包。

该包提供聊天客户端除渲染以外的全部状态与协议逻辑，
包括配置加载、领域模型、身份提供方适配、会话状态与路由访问策略、
携带令牌的 API 客户端、会话同步、AI 回复分段与邮箱验证流程。
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
