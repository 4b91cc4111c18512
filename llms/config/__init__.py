"""
配置管理模块

提供应用程序配置的加载、验证和热重载功能。

使用示例:
    from llms.config import reload_config

    config = await reload_config()
    print(config.server.port)
"""

from .settings import (
    Config,
    LoggingConfig,
    ProviderConfig,
    RouterConfig,
    ServerConfig,
    TransformerPluginConfig,
    get_config_file_path,
    reload_config,
)
from .watcher import ConfigFileHandler, ConfigWatcher

__all__ = [
    "reload_config",
    "get_config_file_path",
    "Config",
    "ServerConfig",
    "LoggingConfig",
    "ProviderConfig",
    "RouterConfig",
    "TransformerPluginConfig",
    "ConfigWatcher",
    "ConfigFileHandler",
]
