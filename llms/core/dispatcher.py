"""
上游请求分发

负责构造出站请求头、代理、超时，发送请求并把上游响应包装为
ProviderResponse。响应体始终以流的方式读取，由后续的转换器和
格式化器决定是否缓冲。
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import Any, TypeVar

import httpx
from loguru import logger

from llms.models.errors import (
    ProviderResponseError,
    RequestAbortedError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)
from llms.models.provider import ProviderDescriptor
from llms.transformers.base import ProviderResponse

T = TypeVar("T")

DEFAULT_TIMEOUT = 3600.0
DEFAULT_CONNECT_TIMEOUT = 30.0

# httpx 已经解码响应体，这些头不能再原样转发
_DROPPED_RESPONSE_HEADERS = frozenset({"content-length", "content-encoding", "transfer-encoding"})
_SECRET_HEADERS = frozenset({"authorization", "x-api-key"})


def build_headers(api_key: str, extra: dict[str, Any] | None) -> dict[str, str]:
    """
    构造出站请求头

    先放入 Content-Type 和 Bearer 认证，再按顺序合并转换器提供的请求头
    （值为 None 表示删除）。值为字面量 "undefined" 的请求头会被丢弃，
    包含 "undefined" 的 authorization 头同样会被丢弃。
    """
    headers: dict[str, Any] = {
        "content-type": "application/json",
        "authorization": f"Bearer {api_key}",
    }
    for key, value in (extra or {}).items():
        key = key.lower()
        if value is None:
            headers.pop(key, None)
        else:
            headers[key] = str(value)

    return {
        key: value
        for key, value in headers.items()
        if value != "undefined" and not (key == "authorization" and "undefined" in value)
    }


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    masked = {}
    for key, value in headers.items():
        if key.lower() in _SECRET_HEADERS:
            masked[key] = f"{value[:10]}***" if len(value) > 10 else "***"
        else:
            masked[key] = value
    return masked


class RequestDeadline:
    """
    请求截止时间

    把每个等待点与剩余时间以及调用方的取消信号赛跑，先触发者生效，
    未触发的等待者会被取消。
    """

    def __init__(self, timeout: float, signal: asyncio.Event | None = None):
        self.timeout = timeout
        self.signal = signal
        self._expires_at = asyncio.get_running_loop().time() + timeout

    def remaining(self) -> float:
        return max(0.0, self._expires_at - asyncio.get_running_loop().time())

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        等待 awaitable 完成

        Raises:
            UpstreamTimeoutError: 截止时间先到
            RequestAbortedError: 取消信号先触发
        """
        task = asyncio.ensure_future(awaitable)
        waiters: set[asyncio.Future[Any]] = {task}
        signal_waiter = None
        if self.signal is not None:
            signal_waiter = asyncio.ensure_future(self.signal.wait())
            waiters.add(signal_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if task in done:
            return task.result()
        if signal_waiter is not None and signal_waiter in done:
            raise RequestAbortedError("Request aborted by client")
        raise UpstreamTimeoutError(f"Upstream request timed out after {self.timeout:g}s")


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class UpstreamDispatcher:
    """上游 HTTP 分发器，每个代理设置复用一个连接池"""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        https_proxy: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.https_proxy = https_proxy
        self._transport = transport
        self._clients: dict[str | None, httpx.AsyncClient] = {}
        self._semaphores: dict[str, tuple[int, asyncio.Semaphore]] = {}

    def get_client(self, proxy: str | None = None) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None or client.is_closed:
            kwargs: dict[str, Any] = {
                "timeout": httpx.Timeout(self.timeout, connect=self.connect_timeout),
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif proxy:
                kwargs["proxy"] = proxy
            client = httpx.AsyncClient(**kwargs)
            self._clients[proxy] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def _semaphore(self, provider: ProviderDescriptor) -> asyncio.Semaphore | None:
        limit = provider.max_concurrency
        if not limit:
            self._semaphores.pop(provider.name, None)
            return None
        current = self._semaphores.get(provider.name)
        if current is None or current[0] != limit:
            current = (limit, asyncio.Semaphore(limit))
            self._semaphores[provider.name] = current
        return current[1]

    async def dispatch(
        self,
        body: dict[str, Any],
        config: dict[str, Any],
        provider: ProviderDescriptor,
        bypass: bool = False,
        signal: asyncio.Event | None = None,
        request_id: str | None = None,
    ) -> ProviderResponse:
        """
        发送请求到上游提供商

        Args:
            body: 出站请求体
            config: 转换器合并后的出站配置（url / headers / https_proxy / timeout）
            provider: 目标提供商
            bypass: 是否为透传模式
            signal: 调用方取消信号
            request_id: 请求ID，用于日志绑定

        Returns:
            流式读取的上游响应，关闭时释放连接和并发名额

        Raises:
            ProviderResponseError: 上游返回非2xx
            UpstreamTimeoutError: 超时
            UpstreamConnectionError: 连接失败
            RequestAbortedError: 调用方取消
        """
        bound_logger = logger.bind(request_id=request_id or "---")
        url = config.get("url") or provider.base_url
        headers = build_headers(provider.api_key, config.get("headers"))
        proxy = config.get("https_proxy") or self.https_proxy
        deadline = RequestDeadline(float(config.get("timeout") or self.timeout), signal)

        bound_logger.debug(
            f"final request: url={url}, headers={mask_headers(headers)}, "
            f"use_proxy={proxy}, bypass={bypass}"
        )

        semaphore = self._semaphore(provider)
        if semaphore is not None:
            await deadline.run(semaphore.acquire())

        client = self.get_client(proxy)
        request = client.build_request("POST", str(url), json=body, headers=headers)
        try:
            upstream = await deadline.run(client.send(request, stream=True))
        except httpx.TimeoutException as e:
            self._release(semaphore)
            raise UpstreamTimeoutError(f"Upstream request timed out: {e}") from e
        except httpx.RequestError as e:
            self._release(semaphore)
            bound_logger.error(f"上游连接失败 ({provider.name}): {e}")
            raise UpstreamConnectionError(f"Failed to reach provider {provider.name}: {e}") from e
        except BaseException:
            self._release(semaphore)
            raise

        async def on_close() -> None:
            try:
                await upstream.aclose()
            finally:
                self._release(semaphore)

        if not upstream.is_success:
            try:
                await deadline.run(upstream.aread())
                error_text = upstream.text
            finally:
                await on_close()
            bound_logger.warning(
                f"上游返回错误 ({provider.name}): {upstream.status_code} {error_text[:500]}"
            )
            raise ProviderResponseError(
                upstream.status_code, error_text, provider.name, str(body.get("model", ""))
            )

        response_headers = {
            key: value
            for key, value in upstream.headers.items()
            if key.lower() not in _DROPPED_RESPONSE_HEADERS
        }
        return ProviderResponse.from_stream(
            self._iter_body(upstream, deadline),
            upstream.status_code,
            response_headers,
            on_close=on_close,
        )

    @staticmethod
    def _release(semaphore: asyncio.Semaphore | None) -> None:
        if semaphore is not None:
            semaphore.release()

    @staticmethod
    async def _iter_body(
        upstream: httpx.Response, deadline: RequestDeadline
    ) -> AsyncIterator[bytes]:
        """按块读取上游响应体，每一块都受截止时间约束"""
        iterator = upstream.aiter_bytes().__aiter__()
        try:
            while True:
                try:
                    chunk = await deadline.run(_next_chunk(iterator))
                except httpx.TimeoutException as e:
                    raise UpstreamTimeoutError(f"Upstream stream timed out: {e}") from e
                except httpx.RequestError as e:
                    raise UpstreamConnectionError(f"Upstream stream interrupted: {e}") from e
                if chunk is None:
                    break
                yield chunk
        finally:
            await upstream.aclose()
