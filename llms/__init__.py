"""
LLMs - 多提供商 LLM 路由网关

将聊天补全请求路由到已注册的提供商，并在客户端格式与提供商格式之间转换。
"""

__version__ = "0.1.0"
