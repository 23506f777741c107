"""
结果上报

把过期 Agent 事件 gzip 压缩后 POST 到 Event API。
"""

import gzip
import json
import logging
from typing import Sequence

import httpx

from .errors import PublishError
from .models import OutdatedAgentRecord

logger = logging.getLogger(__name__)


class EventPublisher:
    """Event API 上报器"""

    def __init__(self, http: httpx.AsyncClient, url: str, ingest_key: str):
        self._http = http
        self._url = url
        self._headers = {
            "Content-Type": "application/json",
            "X-Insert-Key": ingest_key,
            "Content-Encoding": "gzip",
        }

    @staticmethod
    def encode(records: Sequence[OutdatedAgentRecord]) -> bytes:
        """序列化并压缩"""
        payload = json.dumps([r.to_event() for r in records])
        return gzip.compress(payload.encode("utf-8"))

    async def publish(self, records: Sequence[OutdatedAgentRecord]) -> None:
        """
        上报事件

        Raises:
            PublishError: 网络错误或非 2xx 响应
        """
        body = self.encode(records)
        try:
            response = await self._http.post(self._url, headers=self._headers, content=body)
        except httpx.HTTPError as e:
            raise PublishError(f"Failed to post events: {e}") from e

        if not response.is_success:
            raise PublishError(
                f"Event API returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        logger.info(f"Successfully posted {len(records)} outdated agent events")
