"""
移动端版本解析

移动端实体的版本不在标签里，而在 Mobile 事件中。按账号分批（每批 5 个），
一次 GraphQL 请求里为每批放一个带别名的 nrql 查询，合并结果后按 guid 回填。
没有查到版本的实体直接丢弃。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AppConfig
from .errors import MobileVersionError
from .graphql import GraphQLClient
from .models import MobileEntity

logger = logging.getLogger(__name__)

BATCH_SIZE = 5

# newRelicAgent 属性值 -> 配置中的 agent_name
PLATFORM_AGENTS = {
    "iOSAgent": "IOS",
    "AndroidAgent": "ANDROID",
}


def build_platform_filter(has_ios: bool, has_android: bool) -> str:
    """只按实际配置的平台过滤"""
    if has_ios and has_android:
        return "WHERE newRelicAgent IN ('iOSAgent', 'AndroidAgent')"
    if has_ios:
        return "WHERE newRelicAgent = 'iOSAgent'"
    if has_android:
        return "WHERE newRelicAgent = 'AndroidAgent'"
    return ""


def build_version_nrql(platform_filter: str, since: str = "1 day ago") -> str:
    parts = [
        "SELECT latest(newRelicVersion) AS 'agentVersion', latest(newRelicAgent) AS 'agentType'",
        "FROM Mobile",
    ]
    if platform_filter:
        parts.append(platform_filter)
    parts.append(f"FACET entityGuid AS 'guid' LIMIT MAX SINCE {since}")
    return " ".join(parts)


def chunk_accounts(account_ids: Iterable[int], size: int = BATCH_SIZE) -> List[List[int]]:
    """账号去重（保持首次出现顺序）后按 size 分批"""
    unique = list(dict.fromkeys(account_ids))
    return [unique[i:i + size] for i in range(0, len(unique), size)]


def build_batch_query(chunks: Sequence[Sequence[int]], nrql: str, nrql_timeout: int = 120) -> str:
    """每批账号一个别名 nrql 字段，合并为一次请求"""
    escaped = nrql.replace("\\", "\\\\").replace('"', '\\"')
    fields = "\n    ".join(
        f"mobileAgentVersions_set{i}: nrql(accounts: [{', '.join(str(a) for a in chunk)}], "
        f'query: "{escaped}", timeout: {nrql_timeout}) {{ results }}'
        for i, chunk in enumerate(chunks)
    )
    return f"{{\n  actor {{\n    {fields}\n  }}\n}}"


def _merge_results(actor: Dict[str, Any]) -> Dict[str, Tuple[str, Optional[str]]]:
    """合并所有批次：guid -> (version, agent_name)"""
    merged: Dict[str, Tuple[str, Optional[str]]] = {}
    for alias, block in actor.items():
        if not alias.startswith("mobileAgentVersions_set"):
            continue
        for row in (block or {}).get("results") or []:
            guid = row.get("guid") or row.get("facet")
            version = row.get("agentVersion")
            if not guid or version in (None, ""):
                continue
            merged[guid] = (str(version), PLATFORM_AGENTS.get(row.get("agentType")))
    return merged


async def resolve_mobile_versions(
    client: GraphQLClient,
    entities: Sequence[MobileEntity],
    config: AppConfig,
) -> List[MobileEntity]:
    """
    为移动端实体回填 agent_version / agent_type

    Returns:
        查到版本的实体（保持输入顺序）

    Raises:
        MobileVersionError: 批量查询失败
    """
    if not entities:
        return []

    collector = config.collector
    nrql = build_version_nrql(
        build_platform_filter(config.has_agent("IOS"), config.has_agent("ANDROID")),
        since=collector.mobile_since,
    )
    chunks = chunk_accounts((e.account.id for e in entities), collector.mobile_batch_size)
    document = build_batch_query(chunks, nrql, collector.nrql_timeout)

    try:
        data = await client.query(document)
        versions = _merge_results(data["actor"])
    except (KeyError, TypeError, AttributeError) as e:
        raise MobileVersionError(f"Unexpected nrql response: {e!r}") from e
    except Exception as e:
        raise MobileVersionError(f"Failed to fetch mobile agent versions: {e}") from e

    resolved = []
    for entity in entities:
        found = versions.get(entity.guid)
        if found is None:
            continue
        version, agent_type = found
        resolved.append(entity.model_copy(update={"agent_version": version, "agent_type": agent_type}))

    dropped = len(entities) - len(resolved)
    if dropped:
        logger.debug(f"Dropped {dropped} mobile entities without a version fact")
    logger.info(
        f"Resolved versions for {len(resolved)} mobile entities "
        f"across {len(chunks)} account batch(es)"
    )
    return resolved
