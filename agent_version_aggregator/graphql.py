"""
NerdGraph (GraphQL) 客户端

对 httpx.AsyncClient 的薄封装：POST 查询、检查状态码和 GraphQL errors。
不做重试。
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import GraphQLError

logger = logging.getLogger(__name__)


class GraphQLClient:
    """NerdGraph 查询客户端"""

    def __init__(self, http: httpx.AsyncClient, url: str, api_key: str):
        """
        Args:
            http: 共享的 AsyncClient（连接池、超时由调用方配置）
            url: GraphQL 端点
            api_key: User Key
        """
        self._http = http
        self._url = url
        self._headers = {"Content-Type": "application/json", "Api-Key": api_key}

    async def query(
        self,
        document: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        执行一次 GraphQL 查询

        Returns:
            响应中的 data 字段

        Raises:
            httpx.HTTPError: 网络错误或非 2xx 状态码
            GraphQLError: 响应中包含 errors
        """
        response = await self._http.post(
            self._url,
            headers=self._headers,
            json={"query": document, "variables": variables or {}},
        )
        response.raise_for_status()
        payload = response.json()

        errors = payload.get("errors")
        if errors:
            logger.debug(f"GraphQL errors: {json.dumps(errors)}")
            raise GraphQLError(f"GraphQL error: {json.dumps(errors)}", errors=errors)

        data = payload.get("data")
        if data is None:
            raise GraphQLError("GraphQL response has no data")
        return data
