"""
Клиентская часть транспорта: переносит непрозрачные блобы по HTTP.

Любой сбой (таймаут, разрыв, неожиданный статус) превращается в
ProtocolError. Только 204 в инкрементальном режиме означает «не совпало».
"""
import asyncio
import logging
from typing import Optional

import httpx

from errors import ProtocolError

logger = logging.getLogger("psi.transport")

OCTET_STREAM = "application/octet-stream"


def base_url_for(target: str, default_port: int = 5995) -> str:
    """'node1.local:5995' -> 'http://node1.local:5995'"""
    host, _, port = target.partition(':')
    return f"http://{host}:{port or default_port}"


class HttpTransport:
    def __init__(self, base_url: str, timeout: float, client: Optional[httpx.AsyncClient] = None):
        """
        :param base_url: адрес ответчика
        :param timeout: предел на один обмен запрос/ответ, секунды
        :param client: готовый httpx.AsyncClient (например, с ASGITransport в тестах)
        """
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, phase: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            # wait_for отменяет незавершённый запрос при истечении таймаута
            return await asyncio.wait_for(self._client.request(method, url, **kwargs), self.timeout)
        except asyncio.TimeoutError:
            raise ProtocolError(f"Round trip timed out after {self.timeout}s",
                                phase=phase, role="initiator")
        except httpx.HTTPError as e:
            raise ProtocolError(f"Transport failure: {e!r}", phase=phase, role="initiator")

    @staticmethod
    def _expect_ok(response: httpx.Response, phase: str):
        if response.status_code != 200:
            raise ProtocolError(f"HTTP Error: {response.status_code}", phase=phase, role="initiator")

    async def fetch_setup(self, element_count: int) -> bytes:
        response = await self._call("setup", "GET", "/setup",
                                    headers={"X-Num-Elements": str(element_count)})
        self._expect_ok(response, "setup")
        return response.content

    async def send_request(self, request: bytes) -> bytes:
        response = await self._call("request", "POST", "/request", content=request,
                                    headers={"Content-Type": OCTET_STREAM})
        self._expect_ok(response, "request")
        return response.content

    async def fetch_tile(self, index: int, element: bytes, element_count: Optional[int] = None) -> Optional[bytes]:
        """
        :param element_count: число элементов клиента, по нему сервер проверяет индекс
        :return: полезная нагрузка при совпадении, None при ответе 204
        """
        headers = {"Content-Type": OCTET_STREAM}
        if element_count is not None:
            headers["X-Num-Elements"] = str(element_count)
        response = await self._call("tile", "POST", "/get_tile_intersection",
                                    params={"tile_idx": index}, content=element, headers=headers)
        if response.status_code == 204:
            return None
        if response.status_code == 200:
            return response.content
        raise ProtocolError(f"HTTP Error: {response.status_code} for tile {index}",
                            phase="tile", role="initiator")
