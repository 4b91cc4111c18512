"""LLM 提供商数据模型"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from llms.transformers.base import ProviderTransformers


class ProviderDescriptor(BaseModel):
    """已注册的提供商

    name 是提供商的唯一标识，注册、查询、更新、删除均以它为键；
    id 仅作为调用方提供的标签保存。
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: str | None = Field(None, description="调用方提供的标签")
    name: str = Field(description="提供商名称（唯一键）")
    type: Literal["openai", "anthropic"] = Field("openai", description="提供商类型")
    base_url: str = Field(alias="baseUrl", description="API 地址")
    api_key: str = Field(alias="apiKey", description="API 密钥")
    models: list[str] = Field(default_factory=list, description="支持的模型列表")
    enabled: bool = Field(True, description="是否启用")
    transformer: dict[str, Any] | None = Field(None, description="转换器配置")
    max_concurrency: int | None = Field(
        None, alias="maxConcurrency", ge=1, description="上游并发上限"
    )
    transformers: ProviderTransformers | None = Field(None, exclude=True)

    @field_validator("models")
    @classmethod
    def _dedupe_models(cls, models: list[str]) -> list[str]:
        return list(dict.fromkeys(models))

    def public_dict(self) -> dict[str, Any]:
        """对外展示的字典形式"""
        return self.model_dump(by_alias=True, exclude_none=True)


class RegisterProviderRequest(BaseModel):
    """POST /providers 请求体"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: Literal["openai", "anthropic"]
    base_url: str = Field(alias="baseUrl")
    api_key: str = Field(alias="apiKey")
    models: list[str]
    transformer: dict[str, Any] | None = None
    max_concurrency: int | None = Field(None, alias="maxConcurrency", ge=1)


class UpdateProviderRequest(BaseModel):
    """PUT /providers/{name} 请求体，name 不可修改"""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["openai", "anthropic"] | None = None
    base_url: str | None = Field(None, alias="baseUrl")
    api_key: str | None = Field(None, alias="apiKey")
    models: list[str] | None = None
    enabled: bool | None = None
    transformer: dict[str, Any] | None = None
    max_concurrency: int | None = Field(None, alias="maxConcurrency", ge=1)


class ToggleProviderRequest(BaseModel):
    """PATCH /providers/{name}/toggle 请求体"""

    enabled: bool
