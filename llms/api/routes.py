"""基础路由：健康检查、模型列表和提供商管理"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from llms import __version__
from llms.core.gateway import Gateway
from llms.models.provider import (
    RegisterProviderRequest,
    ToggleProviderRequest,
    UpdateProviderRequest,
)

router = APIRouter()


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


@router.get("/")
async def root():
    return {"message": "LLMs API", "version": __version__}


@router.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/v1/models")
async def list_models(request: Request):
    return get_gateway(request).registry.available_models()


@router.post("/providers")
async def create_provider(payload: RegisterProviderRequest, request: Request):
    provider = get_gateway(request).create_provider(payload)
    return provider.public_dict()


@router.get("/providers")
async def list_providers(request: Request):
    providers = get_gateway(request).registry.list_providers()
    return [provider.public_dict() for provider in providers]


@router.get("/providers/{name}")
async def get_provider(name: str, request: Request):
    return get_gateway(request).get_provider(name).public_dict()


@router.put("/providers/{name}")
async def update_provider(name: str, payload: UpdateProviderRequest, request: Request):
    patch = payload.model_dump(exclude_unset=True)
    provider = get_gateway(request).update_provider(name, patch)
    return provider.public_dict()


@router.delete("/providers/{name}")
async def delete_provider(name: str, request: Request):
    get_gateway(request).delete_provider(name)
    return {"message": "Provider deleted successfully"}


@router.patch("/providers/{name}/toggle")
async def toggle_provider(name: str, payload: ToggleProviderRequest, request: Request):
    provider = get_gateway(request).toggle_provider(name, payload.enabled)
    return {
        "message": f"Provider {'enabled' if provider.enabled else 'disabled'} successfully",
        "enabled": provider.enabled,
    }
