"""
测试公共设施

FakeNerdGraph 基于 httpx.MockTransport 模拟 NerdGraph：
- agentReleases：按 agentName 返回发布列表，或返回 GraphQL errors
- entitySearch：按领域和游标返回分页结果
- nrql 批量查询：按别名中的账号返回 Mobile 版本行
"""

import asyncio
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from agent_version_aggregator.config import AppConfig, Credentials
from agent_version_aggregator.graphql import GraphQLClient
from agent_version_aggregator.models import AgentSpec, Domain

GRAPHQL_URL = "https://api.example.test/graphql"
EVENTS_URL = "https://events.example.test/v1/accounts/{account_id}/events"

_AGENT_RE = re.compile(r"agentReleases\(agentName: (\w+)\)")
_DOMAIN_RE = re.compile(r"domain = '(\w+)'")
_ALIAS_RE = re.compile(r"(mobileAgentVersions_set\d+): nrql\(accounts: \[([^\]]*)\]")


class FakeNerdGraph:
    """可编程的 NerdGraph 假实现"""

    def __init__(self):
        self.releases: Dict[str, Any] = {}
        # domain -> {cursor: (entities, next_cursor)}
        self.pages: Dict[str, Dict[Optional[str], Tuple[List[Dict[str, Any]], Optional[str]]]] = {}
        self.failing_domains: set = set()
        # 每行包含 account 字段，用于按批次分配
        self.mobile_rows: List[Dict[str, Any]] = []
        self.mobile_errors = False
        self.requests: List[Dict[str, Any]] = []

    def set_entities(self, domain: str, entities: List[Dict[str, Any]]):
        self.pages[domain] = {None: (entities, None)}

    def queries_containing(self, text: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if text in r["query"]]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        query = body["query"]
        variables = body.get("variables") or {}

        match = _AGENT_RE.search(query)
        if match:
            releases = self.releases.get(match.group(1))
            if releases is None or isinstance(releases, Exception):
                return httpx.Response(200, json={"errors": [{"message": "agent not found"}]})
            return httpx.Response(200, json={"data": {"docs": {"agentReleases": releases}}})

        if "entitySearch" in query:
            domain = _DOMAIN_RE.search(variables["query"]).group(1)
            if domain in self.failing_domains:
                return httpx.Response(500, json={"message": "boom"})
            entities, next_cursor = self.pages.get(domain, {None: ([], None)})[variables.get("cursor")]
            results = {"entities": entities, "nextCursor": next_cursor}
            return httpx.Response(200, json={"data": {"actor": {"entitySearch": {"results": results}}}})

        if "mobileAgentVersions_set" in query:
            if self.mobile_errors:
                return httpx.Response(200, json={"errors": [{"message": "nrql timeout"}]})
            actor = {}
            for alias, accounts in _ALIAS_RE.findall(query):
                ids = {int(a) for a in accounts.split(",") if a.strip()}
                rows = [
                    {k: v for k, v in row.items() if k != "account"}
                    for row in self.mobile_rows
                    if row["account"] in ids
                ]
                actor[alias] = {"results": rows}
            return httpx.Response(200, json={"data": {"actor": actor}})

        return httpx.Response(400, json={"errors": [{"message": "unexpected query"}]})


def entity_dict(
    domain: str,
    guid: str,
    account_id: int = 1,
    name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
    **extra,
) -> Dict[str, Any]:
    """构造 NerdGraph 格式的实体"""
    data = {
        "account": {"id": account_id, "name": f"Account {account_id}"},
        "name": name or guid,
        "guid": guid,
        "tags": [{"key": k, "values": [v]} for k, v in (tags or {}).items()],
        "domain": domain,
    }
    data.update(extra)
    return data


def make_config(*agents: Tuple[str, Domain], **overrides) -> AppConfig:
    """构造测试配置（凭据不读取环境变量）"""
    specs = tuple(AgentSpec(agent_name=name, domain=domain) for name, domain in agents)
    overrides.setdefault("account_id", 42)
    overrides.setdefault("api", {"graphql_url": GRAPHQL_URL, "events_url": EVENTS_URL})
    return AppConfig(
        agents=specs,
        credentials=Credentials(user_key="user-key", ingest_key="ingest-key"),
        **overrides,
    )


@pytest.fixture
def fake() -> FakeNerdGraph:
    return FakeNerdGraph()


@pytest.fixture
def run_with_client(fake):
    """在 MockTransport 上执行 fn(client)"""

    def _run(fn):
        async def _main():
            async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
                return await fn(GraphQLClient(http, GRAPHQL_URL, "user-key"))

        return asyncio.run(_main())

    return _run
