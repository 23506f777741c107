"""
Agent 发布目录拉取

按配置的 Agent 并发拉取全部发布历史（受 max_concurrency 限制），
单个 Agent 失败只记录日志并排除，不影响其他 Agent。
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import ReleaseFetchError
from .graphql import GraphQLClient
from .models import AgentSpec, LatestRelease, ReleaseCatalog, ReleaseRecord
from .versions import normalize_version

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 25

# agentName 是 GraphQL 枚举值，只能内联
AGENT_RELEASES_QUERY = "{ docs { agentReleases(agentName: %s) { version date } } }"

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


async def fetch_agent_releases(client: GraphQLClient, agent: AgentSpec) -> List[ReleaseRecord]:
    """
    拉取单个 Agent 的发布历史

    Raises:
        ReleaseFetchError: 请求失败或响应结构不符合预期
    """
    try:
        data = await client.query(AGENT_RELEASES_QUERY % agent.agent_name)
        releases = (data.get("docs") or {}).get("agentReleases")
    except Exception as e:
        raise ReleaseFetchError(agent.agent_name, str(e)) from e

    if not isinstance(releases, list):
        raise ReleaseFetchError(agent.agent_name, "response has no agentReleases list")

    records = []
    for r in releases:
        if r is None:
            continue
        if not isinstance(r, dict):
            raise ReleaseFetchError(agent.agent_name, f"Malformed release entry: {r!r}")
        try:
            records.append(ReleaseRecord(
                agent_name=agent.agent_name,
                domain=agent.domain,
                version=normalize_version(agent.domain, r.get("version")),
                date=r.get("date"),
            ))
        except ValidationError as e:
            raise ReleaseFetchError(agent.agent_name, f"Malformed release entry: {e}") from e
    return records


def _date_key(record: ReleaseRecord) -> Tuple[bool, datetime]:
    # 缺失日期总是更早
    return (record.date is not None, record.date or _OLDEST)


def reduce_latest_releases(records: Iterable[ReleaseRecord]) -> Dict[str, LatestRelease]:
    """
    每个 agent_name 保留日期最大的发布记录

    日期相同时后出现的记录胜出（last-seen-wins）。
    """
    latest: Dict[str, LatestRelease] = {}
    for record in records:
        current = latest.get(record.agent_name)
        if current is None or _date_key(record) >= _date_key(current):
            latest[record.agent_name] = record
    return latest


async def fetch_release_catalog(
    client: GraphQLClient,
    agents: Sequence[AgentSpec],
    max_concurrency: int = MAX_CONCURRENCY,
) -> ReleaseCatalog:
    """
    并发拉取所有 Agent 的发布历史并归约出最新版本

    Args:
        client: GraphQL 客户端
        agents: 配置的 Agent 列表
        max_concurrency: 同时在途请求上限

    Returns:
        ReleaseCatalog（失败的 Agent 记录在 failed_agents 中）
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _fetch_one(agent: AgentSpec) -> Optional[List[ReleaseRecord]]:
        async with semaphore:
            try:
                return await fetch_agent_releases(client, agent)
            except ReleaseFetchError as e:
                logger.error(f"Error fetching versions for agent {agent.agent_name}: {e}")
                return None

    results = await asyncio.gather(*(_fetch_one(agent) for agent in agents))

    records: List[ReleaseRecord] = []
    failed: List[str] = []
    for agent, result in zip(agents, results):
        if result is None:
            failed.append(agent.agent_name)
            continue
        records.extend(result)
        logger.debug(f"Fetched {len(result)} releases for {agent.agent_name}")

    latest = reduce_latest_releases(records)
    logger.info(
        f"Release catalog: {len(records)} releases, {len(latest)} agents "
        f"({len(failed)} failed)"
    )
    return ReleaseCatalog(records=tuple(records), latest=latest, failed_agents=tuple(failed))
