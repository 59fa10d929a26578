# plugins/core_sync/remote.py

import logging
from typing import Optional

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)

from backend.core.contracts import UserDataset
from plugins.core_persistence.codec import encode_dataset
from .contracts import RemoteErrorKind, RemoteStoreError, RemoteStoreInterface

logger = logging.getLogger(__name__)

# 服务端限流 / 暂时不可用
RETRYABLE_STATUS_CODES = frozenset({429, 503})


def is_retryable_remote_error(retry_state: RetryCallState) -> bool:
    """Tenacity 重试条件：网络错误和 429/503 重试，其余 4xx/5xx 直接失败。"""
    exception = retry_state.outcome.exception()
    if not isinstance(exception, RemoteStoreError):
        return False
    if exception.kind == RemoteErrorKind.NETWORK:
        return True
    return exception.kind == RemoteErrorKind.HTTP and exception.status_code in RETRYABLE_STATUS_CODES


class RemoteStoreClient(RemoteStoreInterface):
    """
    /api/data 的 httpx 客户端。
    上传使用 multipart 文件，内容为 XOR 混淆后的 JSON。
    取消（CancelledError）直接向上传播，正在进行的请求随之中止。
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.8,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise RemoteStoreError(RemoteErrorKind.NETWORK, f"{type(e).__name__}: {e}") from e
        if response.is_error:
            raise RemoteStoreError(
                RemoteErrorKind.HTTP,
                f"{method} {url} failed: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, exp_base=1.5, max=10),
            retry=is_retryable_remote_error,
            before_sleep=lambda state: logger.warning(
                f"Remote store request {method} {url} failed "
                f"(attempt {state.attempt_number}/{self._max_attempts}): {state.outcome.exception()}. Retrying..."
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(method, url, **kwargs)

    async def load(self, user_id: str) -> UserDataset:
        response = await self._request("GET", "/api/data", params={"userId": user_id})
        try:
            return UserDataset.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteStoreError(RemoteErrorKind.DATA_FORMAT, f"Malformed dataset from remote: {e}") from e

    async def save(self, user_id: str, dataset: UserDataset) -> int:
        payload = encode_dataset(dataset.to_wire())
        files = {"file": ("data.bin", payload, "application/octet-stream")}
        response = await self._request("POST", "/api/data", params={"userId": user_id}, files=files)
        try:
            return int(response.json()["timestamp"])
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteStoreError(RemoteErrorKind.DATA_FORMAT, f"Unexpected save response: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
