"""
实体清单拉取

每个领域一个任务并发执行；领域内按游标顺序分页（上一页返回后才请求下一页）。
任一领域失败对本次运行是致命的。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .config import AppConfig
from .errors import EntityFetchError, PaginationLoopError
from .graphql import GraphQLClient
from .models import AgentSpec, Domain, Entity, parse_entity

logger = logging.getLogger(__name__)

ENTITY_SEARCH_QUERY = """
query($query: String!, $cursor: String) {
  actor {
    entitySearch(query: $query) {
      results(cursor: $cursor) {
        entities {
          account {
            id
            name
          }
          name
          guid
          tags {
            key
            values
          }
          domain
          ... on BrowserApplicationEntityOutline {
            runningAgentVersions {
              minVersion
              maxVersion
            }
          }
        }
        nextCursor
      }
    }
  }
}
"""


def build_entity_search_filter(
    base_filter: str,
    domain: Domain,
    agents: Sequence[AgentSpec],
) -> str:
    """
    组合实体搜索条件

    基础条件 AND 领域条件；APM 额外限定为配置的语言（小写）。

    例：reporting is true AND domain = 'APM' AND tags.language in ('java', 'python')
    """
    parts = [base_filter] if base_filter else []
    parts.append(f"domain = '{domain.value}'")

    if domain == Domain.APM:
        languages = [a.agent_name.lower() for a in agents if a.domain == Domain.APM]
        if languages:
            language_list = ", ".join(f"'{lang}'" for lang in languages)
            parts.append(f"tags.language in ({language_list})")

    return " AND ".join(parts)


async def fetch_domain_entities(
    client: GraphQLClient,
    domain: Domain,
    search_filter: str,
) -> List[Entity]:
    """
    拉取一个领域的全部实体（顺序分页）

    Raises:
        PaginationLoopError: 游标重复出现
        EntityFetchError: 请求失败或实体无法解析
    """
    entities: List[Entity] = []
    seen_cursors = set()
    cursor: Optional[str] = None
    page = 0

    while True:
        try:
            data = await client.query(
                ENTITY_SEARCH_QUERY,
                {"query": search_filter, "cursor": cursor},
            )
            results = data["actor"]["entitySearch"]["results"]
        except (KeyError, TypeError) as e:
            raise EntityFetchError(domain.value, f"Unexpected entitySearch response: {e!r}") from e
        except Exception as e:
            raise EntityFetchError(domain.value, f"Failed to fetch entities: {e}") from e

        if not isinstance(results, dict):
            raise EntityFetchError(domain.value, "entitySearch returned no results")

        page += 1
        raw_entities: List[Dict[str, Any]] = results.get("entities") or []
        try:
            entities.extend(parse_entity(raw) for raw in raw_entities)
        except ValidationError as e:
            raise EntityFetchError(domain.value, f"Malformed entity on page {page}: {e}") from e

        cursor = results.get("nextCursor")
        if not cursor:
            break
        if cursor in seen_cursors:
            raise PaginationLoopError(domain.value, f"Cursor repeated after page {page}: {cursor}")
        seen_cursors.add(cursor)

    logger.info(f"Fetched {len(entities)} {domain.value} entities in {page} page(s)")
    return entities


async def fetch_entity_inventory(client: GraphQLClient, config: AppConfig) -> List[Entity]:
    """
    并发拉取所有配置领域的实体

    结果按领域在配置中首次出现的顺序拼接。
    """
    domains = config.domains
    tasks = [
        fetch_domain_entities(
            client,
            domain,
            build_entity_search_filter(config.entity_search_filter, domain, config.agents),
        )
        for domain in domains
    ]
    # 所有领域结束后再抛出第一个错误
    results = await asyncio.gather(*tasks, return_exceptions=True)

    entities: List[Entity] = []
    for domain_entities in results:
        if isinstance(domain_entities, BaseException):
            raise domain_entities
        entities.extend(domain_entities)
    return entities
