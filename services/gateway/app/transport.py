"""
Gateway - 下流トランスポートの共通部分

在庫サービスへの HTTP 呼び出しを 1 か所に集め、失敗はすべて
TransportError に揃える (接続失敗・想定外のステータス・壊れたペイロード)。
"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from services.shared.logs import trace_headers

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class TransportError(Exception):
    """下流呼び出しの失敗。リトライの対象になる。"""


class HttpTransport:
    """共有の httpx.AsyncClient を使って在庫サービスを呼び出す。"""

    name = "http"

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        accept: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> Any:
        headers = {**trace_headers(), **kwargs.pop("headers", {})}
        try:
            resp = await self.client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{self.name} {method} {url} failed: {e!r}") from e

        if resp.status_code not in accept:
            raise TransportError(
                f"{self.name} {method} {url} returned HTTP {resp.status_code}"
            )
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{self.name} {method} {url} returned malformed JSON") from e

    def _parse(self, model: type[ModelT], payload: Any) -> ModelT:
        """ワイヤ上のペイロードを正準 DTO に戻す。欠けたフィールドは None のまま。"""
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise TransportError(
                f"{self.name} payload does not match {model.__name__}: {e.error_count()} error(s)"
            ) from e
