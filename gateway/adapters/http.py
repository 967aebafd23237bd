import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class HttpxHttpClient:
    """Pooled httpx client used for processor health probes and payment forwarding.

    Transport errors are logged and re-raised; callers decide whether they
    mean a failed probe or a failed forward.
    """

    def __init__(
        self,
        timeout: float = 1.0,
        max_connections: int = 50,
        max_keepalive_connections: int = 20,
    ):
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Processor call {method} {url} timed out: {e}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Processor call {method} {url} could not be sent: {e}")
            raise
        logger.debug(f"Processor call {method} {url} -> HTTP {response.status_code}")
        return response

    async def get(self, url: str) -> httpx.Response:
        return await self._send("GET", url)

    async def post(self, url: str, json: Any) -> httpx.Response:
        return await self._send("POST", url, json=json)

    async def close(self):
        await self.client.aclose()
