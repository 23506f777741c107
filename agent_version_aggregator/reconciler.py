"""
版本对账

把实体、实体当前版本和各 Agent 的最新发布关联起来，
生成过期 Agent 事件。未过期或无法比较的实体直接跳过。
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .config import AppConfig
from .models import (
    BrowserEntity,
    Domain,
    Entity,
    MobileEntity,
    OutdatedAgentRecord,
    ReleaseCatalog,
)
from .versions import is_outdated, normalize_version

logger = logging.getLogger(__name__)

VERSION_TAG = "agentVersion"


def _tag_version(entity: Entity) -> Optional[str]:
    return normalize_version(Domain(entity.domain), entity.tag(VERSION_TAG))


def _browser_version(entity: BrowserEntity) -> Optional[str]:
    # 取正在运行的最旧版本
    running = entity.running_agent_versions
    if running is None:
        return None
    raw = running.min_version if running.min_version is not None else running.max_version
    return normalize_version(Domain.BROWSER, raw)


def _mobile_version(entity: MobileEntity) -> Optional[str]:
    return normalize_version(Domain.MOBILE, entity.agent_version)


CURRENT_VERSION_EXTRACTORS: Dict[Domain, Callable[..., Optional[str]]] = {
    Domain.APM: _tag_version,
    Domain.INFRA: _tag_version,
    Domain.BROWSER: _browser_version,
    Domain.MOBILE: _mobile_version,
}


def current_version_of(entity: Entity) -> Optional[str]:
    """按领域取实体当前的规范版本"""
    return CURRENT_VERSION_EXTRACTORS[Domain(entity.domain)](entity)


def _agent_hint(entity: Entity) -> Optional[str]:
    """实体自身携带的 Agent 类型线索"""
    if isinstance(entity, MobileEntity):
        return entity.agent_type
    if entity.domain == Domain.APM.value:
        language = entity.tag("language")
        return language.upper() if language else None
    return None


def resolve_agent_name(
    entity: Entity,
    current_version: str,
    catalog: ReleaseCatalog,
    config: AppConfig,
) -> Optional[str]:
    """
    确定实体对应的 agent_name

    依次尝试：
    1. 实体线索（APM 的 language 标签、移动端解析出的平台）
    2. 同领域中版本号与当前版本一致的发布记录
    3. 该领域只配置了一个 Agent 时直接使用
    """
    domain = Domain(entity.domain)
    configured = [a.agent_name for a in config.agents_in(domain)]

    hint = _agent_hint(entity)
    if hint and hint in configured:
        return hint

    record = catalog.find_in_domain(domain, current_version)
    if record is not None:
        return record.agent_name

    if len(configured) == 1:
        return configured[0]
    return None


def age_in_days(released_at: Optional[datetime], now: datetime) -> Optional[int]:
    """发布至今的整天数；发布日期未知时为 None"""
    if released_at is None:
        return None
    return math.floor((now - released_at).total_seconds() / 86400)


def reconcile(
    entities: Sequence[Entity],
    catalog: ReleaseCatalog,
    config: AppConfig,
    now: Optional[datetime] = None,
) -> List[OutdatedAgentRecord]:
    """
    生成过期 Agent 事件列表

    Args:
        entities: 全部实体（移动端已回填版本）
        catalog: 发布目录
        config: 应用配置（提供附加标签列表）
        now: 计算版本年龄的当前时间，默认 UTC 当前时间

    Returns:
        按实体顺序排列的事件列表
    """
    if now is None:
        now = datetime.now(timezone.utc)

    outdated: List[OutdatedAgentRecord] = []
    for entity in entities:
        current_version = current_version_of(entity)
        if current_version is None:
            continue

        agent_name = resolve_agent_name(entity, current_version, catalog, config)
        if agent_name is None:
            logger.debug(f"Cannot resolve agent type for {entity.guid} ({entity.domain})")
            continue

        latest = catalog.latest.get(agent_name)
        if latest is None or not is_outdated(current_version, latest.version, Domain(entity.domain)):
            continue

        current_release = catalog.find(agent_name, current_version)
        current_date = current_release.date if current_release else None

        outdated.append(OutdatedAgentRecord(
            account_name=entity.account.name,
            account_id=entity.account.id,
            domain=entity.domain,
            agent_type=agent_name,
            entity_name=entity.name,
            entity_guid=entity.guid,
            current_version=current_version,
            current_version_release_date=current_date,
            current_version_age_in_days=age_in_days(current_date, now),
            latest_version=latest.version,
            latest_version_release_date=latest.date,
            extra_tags={tag: entity.tag(tag) for tag in config.tags_to_include},
        ))

    logger.info(f"Reconciled {len(entities)} entities: {len(outdated)} outdated")
    return outdated
