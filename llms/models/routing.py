"""模型路由相关数据模型"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .provider import ProviderDescriptor


class RouteRule(BaseModel):
    """模型路由规则

    pattern 为正则表达式（不区分大小写），target_model 中可以使用
    $0（整个匹配）和 $1..$N（捕获组）占位符。
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pattern: str = Field(description="正则表达式")
    target_model: str = Field(alias="targetModel", description="目标模型模板")
    provider: str | None = Field(None, description="目标提供商，未指定时使用默认提供商")
    description: str | None = Field(None, description="规则描述")


@dataclass(frozen=True)
class RouteMatch:
    """规则匹配结果，model 格式为 provider,model"""

    model: str
    description: str | None = None


@dataclass(frozen=True)
class RouteEntry:
    """路由表条目"""

    provider: str
    model: str
    full_model: str

    @classmethod
    def for_model(cls, provider: str, model: str) -> "RouteEntry":
        return cls(provider=provider, model=model, full_model=f"{provider},{model}")


@dataclass(frozen=True)
class RouteInfo:
    """路由解析结果"""

    provider: "ProviderDescriptor"
    original_model: str
    target_model: str
