import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class TriggerClient:
    def __init__(
        self,
        base_url: str,
        admin_token: Optional[str] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.admin_token = admin_token
        # One dispatch cycle runs a whole render, so the timeout is generous
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    def _build_headers(self) -> Dict[str, str]:
        headers = {}
        if self.admin_token:
            headers["X-Admin-Token"] = self.admin_token
        return headers

    async def process(self) -> Optional[Dict[str, Any]]:
        """
        Asks the service to run one dispatch cycle.
        Returns the cycle summary, or None if the call failed.
        """
        try:
            resp = await self.client.post("/api/v1/queue/process", headers=self._build_headers())
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            log_fn = logger.info if status_code in (401, 403) else logger.warning
            log_fn(f"Trigger rejected by {self.base_url}: status={status_code}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Trigger failed against {self.base_url}: {e}")
            return None

    async def close(self):
        await self.client.aclose()
