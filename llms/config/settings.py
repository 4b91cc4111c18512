"""应用配置

配置文件为 JSON 格式，支持：
- extends: 继承其他配置文件（相对路径，或简写名称 -> configs/config-<name>.json）
- ${VAR}: 环境变量插值
- 兼容旧版的大写键（HOST、PORT、LOG_LEVEL、API_TIMEOUT_MS、PROXY_URL、HTTPS_PROXY、Router）
"""

import json
import os
import re
from pathlib import Path
from typing import Any

import aiofiles
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from llms.models.routing import RouteRule

DEFAULT_CONFIG_PATH = "config/settings.json"
CONFIG_SHORTCUT_DIR = "configs"
CONFIG_SHORTCUT_PREFIX = "config-"
CONFIG_SHORTCUT_SUFFIX = ".json"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

# 旧版大写键 -> 新版嵌套路径
_LEGACY_KEYS = {
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "LOG_LEVEL": ("logging", "level"),
    "API_TIMEOUT_MS": ("api_timeout_ms",),
    "PROXY_URL": ("https_proxy",),
    "HTTPS_PROXY": ("https_proxy",),
    "Router": ("router",),
}


class ServerConfig(BaseModel):
    """服务器配置"""

    host: str = Field("127.0.0.1", description="服务监听主机")
    port: int = Field(3000, ge=1, le=65535, description="服务监听端口")


class LoggingConfig(BaseModel):
    """日志配置"""

    level: str = Field("INFO", description="日志级别")
    file: str | None = Field("logs/app.log", description="日志文件路径，为空时不写文件")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"无效的日志级别: {value}")
        return value


class ProviderConfig(BaseModel):
    """配置文件中的提供商定义"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    name: str
    type: str = "openai"
    base_url: str = Field(validation_alias=AliasChoices("baseUrl", "api_base_url", "base_url"))
    api_key: str = Field(validation_alias=AliasChoices("apiKey", "api_key"))
    models: list[str] = Field(default_factory=list)
    enabled: bool = True
    transformer: dict[str, Any] | None = None
    max_concurrency: int | None = Field(
        None, validation_alias=AliasChoices("maxConcurrency", "max_concurrency")
    )

    def to_descriptor_data(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RouterConfig(BaseModel):
    """模型路由配置"""

    model_config = ConfigDict(populate_by_name=True)

    default: str | None = Field(
        "openrouter,anthropic/claude-3.5-sonnet", description="默认模型（provider,model）"
    )
    default_provider: str | None = Field(
        None,
        validation_alias=AliasChoices("default_provider", "defaultProvider"),
        description="路由规则未指定提供商时使用的默认提供商",
    )
    rules: list[RouteRule] = Field(default_factory=list, description="自定义路由规则")

    def resolve_default_provider(self) -> str | None:
        """未显式配置时使用默认模型的提供商部分"""
        if self.default_provider:
            return self.default_provider
        if self.default and "," in self.default:
            return self.default.split(",", 1)[0] or None
        return None


class TransformerPluginConfig(BaseModel):
    """外部转换器插件"""

    path: str = Field(description="module:Factory 形式的导入路径")
    options: dict[str, Any] | None = None


class Config(BaseModel):
    """应用配置根模型"""

    model_config = ConfigDict(extra="allow")

    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    providers: list[ProviderConfig] = Field(default_factory=list)
    router: RouterConfig = Field(default_factory=RouterConfig)
    transformers: list[TransformerPluginConfig] = Field(default_factory=list)
    https_proxy: str | None = Field(None, description="HTTPS代理地址")
    api_timeout_ms: int = Field(3600000, gt=0, description="上游请求总超时（毫秒）")
    connect_timeout_ms: int = Field(30000, gt=0, description="上游连接超时（毫秒）")

    def get(self, key: str, default: Any = None) -> Any:
        """按键读取配置（包括未声明的额外键）"""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key, default)

    def get_https_proxy(self) -> str | None:
        return (
            self.https_proxy
            or self.get("httpsProxy")
            or os.getenv("HTTPS_PROXY")
            or os.getenv("https_proxy")
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """从原始字典构造配置（兼容旧版键并插值环境变量）"""
        return cls.model_validate(normalize_legacy_keys(interpolate_env_vars(data)))

    @classmethod
    async def from_file(cls, config_path: str | None = None) -> "Config":
        """异步加载配置文件

        Args:
            config_path: 配置文件路径，为空时使用 get_config_file_path()

        Returns:
            配置实例；文件不存在时返回默认配置
        """
        path = Path(config_path or get_config_file_path())
        if not path.exists():
            logger.warning(f"配置文件不存在，使用默认配置: {path}")
            return cls()

        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
        data = _resolve_extends(json.loads(content), path)
        config = cls.from_dict(data)
        logger.info(f"已加载配置文件: {path}")
        return config

    @classmethod
    def from_file_sync(cls, config_path: str | None = None) -> "Config":
        """同步加载配置文件，用于启动阶段"""
        path = Path(config_path or get_config_file_path())
        if not path.exists():
            logger.warning(f"配置文件不存在，使用默认配置: {path}")
            return cls()

        data = _resolve_extends(_read_json(path), path)
        return cls.from_dict(data)


def get_config_file_path() -> str:
    return os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)


def interpolate_env_vars(value: Any) -> Any:
    """递归替换 ${VAR}，未设置的变量保持原样"""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1)) or m.group(0), value)
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    return value


def normalize_legacy_keys(data: dict[str, Any]) -> dict[str, Any]:
    """把旧版大写键映射到新版结构，新版键优先"""
    result = dict(data)
    for legacy_key, path in _LEGACY_KEYS.items():
        if legacy_key not in result:
            continue
        value = result.pop(legacy_key)
        if len(path) == 1:
            result.setdefault(path[0], value)
        else:
            section = dict(result.get(path[0]) or {})
            section.setdefault(path[1], value)
            result[path[0]] = section
    return result


def _read_json(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _resolve_extends_path(extends: str, config_path: Path) -> Path:
    base_dir = config_path.parent
    if "/" not in extends and not extends.endswith(CONFIG_SHORTCUT_SUFFIX):
        return base_dir / CONFIG_SHORTCUT_DIR / (
            f"{CONFIG_SHORTCUT_PREFIX}{extends}{CONFIG_SHORTCUT_SUFFIX}"
        )
    return base_dir / extends


def _resolve_extends(data: dict[str, Any], config_path: Path, depth: int = 0) -> dict[str, Any]:
    """合并 extends 指向的基础配置，当前配置的顶层键覆盖基础配置"""
    extends = data.get("extends")
    if not extends:
        return data

    data = {key: value for key, value in data.items() if key != "extends"}
    if depth >= 10:
        logger.warning(f"配置继承层级过深，停止解析: {config_path}")
        return data

    base_path = _resolve_extends_path(extends, config_path)
    if not base_path.exists():
        logger.warning(f"扩展配置文件未找到: {base_path}")
        return data

    base = _resolve_extends(_read_json(base_path), base_path, depth + 1)
    logger.info(f"继承配置: {base_path}")
    return {**base, **data}


async def reload_config(config_path: str | None = None) -> Config:
    """重新加载配置"""
    config = await Config.from_file(config_path)
    logger.info("配置已重新加载")
    return config
