"""
对账流程编排

1. 并发拉取发布目录和实体清单（等待两者都完成）
2. 拆出移动端实体，批量解析版本后合并回去
3. 对账生成过期事件
4. 有结果时上报
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .config import AppConfig
from .entities import fetch_entity_inventory
from .graphql import GraphQLClient
from .mobile import resolve_mobile_versions
from .models import Domain, MobileEntity, OutdatedAgentRecord
from .publisher import EventPublisher
from .reconciler import reconcile
from .releases import fetch_release_catalog

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """一次运行的结果摘要"""
    records: List[OutdatedAgentRecord] = field(default_factory=list)
    entity_count: int = 0
    failed_agents: Tuple[str, ...] = ()
    published: bool = False


async def run_pipeline(
    config: AppConfig,
    client: GraphQLClient,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> RunResult:
    """
    执行一次完整的对账

    Args:
        config: 应用配置
        client: NerdGraph 客户端
        publisher: 事件上报器；为 None 或 dry_run 时不上报
        now: 当前时间（测试用）
        dry_run: 只计算不上报

    Raises:
        EntityFetchError / MobileVersionError / PublishError: 致命错误
    """
    # 两路拉取都结束后再处理错误
    catalog, entities = await asyncio.gather(
        fetch_release_catalog(client, config.agents, config.collector.max_concurrency),
        fetch_entity_inventory(client, config),
        return_exceptions=True,
    )
    for outcome in (entities, catalog):
        if isinstance(outcome, BaseException):
            raise outcome

    if Domain.MOBILE in config.domains:
        mobile = [e for e in entities if isinstance(e, MobileEntity)]
        entities = [e for e in entities if not isinstance(e, MobileEntity)]
        entities.extend(await resolve_mobile_versions(client, mobile, config))

    records = reconcile(entities, catalog, config, now=now)
    result = RunResult(
        records=records,
        entity_count=len(entities),
        failed_agents=catalog.failed_agents,
    )

    if not records:
        logger.info("No outdated agents found. No results written to New Relic")
        return result

    if dry_run or publisher is None:
        logger.info(f"Dry run: {len(records)} outdated agents not published")
        return result

    await publisher.publish(records)
    result.published = True
    return result
