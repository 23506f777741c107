"""
数据模型定义

包括：
- Agent / 发布记录模型
- 按领域区分的实体模型（discriminated union）
- 过期 Agent 事件模型
"""

from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


EVENT_TYPE = "OutdatedAgents"


class Domain(str, Enum):
    """产品领域"""
    APM = "APM"
    INFRA = "INFRA"
    BROWSER = "BROWSER"
    MOBILE = "MOBILE"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


def parse_release_date(value: Any) -> Optional[datetime]:
    """
    宽松解析发布日期

    接受 ISO 日期、ISO 时间（包括结尾的 Z）和 datetime/date 对象，
    无时区的值按 UTC 处理；无法解析时返回 None。
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Agent 与发布记录
# =============================================================================

class AgentSpec(_FrozenModel):
    """需要检查的 Agent 类型"""
    agent_name: str = Field(..., pattern=r"^[A-Z][A-Z0-9_]*$")
    domain: Domain

    @field_validator("agent_name", mode="before")
    @classmethod
    def _upper_name(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class ReleaseRecord(_FrozenModel):
    """单次发布（一个 Agent 类型有多条）"""
    agent_name: str
    domain: Domain
    version: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Optional[datetime]:
        return parse_release_date(value)


# 每个 agent_name 只保留日期最大的一条
LatestRelease = ReleaseRecord


class ReleaseCatalog(_FrozenModel):
    """发布目录：全部发布记录 + 每个 Agent 的最新发布"""
    records: Tuple[ReleaseRecord, ...] = ()
    latest: Mapping[str, LatestRelease] = Field(default_factory=dict, validate_default=True)
    failed_agents: Tuple[str, ...] = ()

    # 版本索引在构造时建立一次；同一键保留最先出现的记录
    _by_agent: Dict[Tuple[str, str], ReleaseRecord] = PrivateAttr(default_factory=dict)
    _by_domain: Dict[Tuple[Domain, str], ReleaseRecord] = PrivateAttr(default_factory=dict)

    @field_validator("latest", mode="after")
    @classmethod
    def _read_only_latest(cls, value: Mapping[str, LatestRelease]) -> Mapping[str, LatestRelease]:
        return MappingProxyType(dict(value))

    def model_post_init(self, __context: Any) -> None:
        for record in self.records:
            if record.version is None:
                continue
            self._by_agent.setdefault((record.agent_name, record.version), record)
            self._by_domain.setdefault((record.domain, record.version), record)

    def find(self, agent_name: str, version: Optional[str]) -> Optional[ReleaseRecord]:
        """按 Agent 与版本查找发布记录"""
        if version is None:
            return None
        return self._by_agent.get((agent_name, version))

    def find_in_domain(self, domain: Domain, version: Optional[str]) -> Optional[ReleaseRecord]:
        """按领域与版本查找发布记录"""
        if version is None:
            return None
        return self._by_domain.get((domain, version))


# =============================================================================
# 实体（按 domain 区分）
# =============================================================================

class Account(_FrozenModel):
    """实体所属账号"""
    id: int
    name: Optional[str] = None


class _EntityBase(_FrozenModel):
    account: Account
    name: Optional[str] = None
    guid: str
    tags: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_from_list(cls, value: Any) -> Any:
        # NerdGraph 返回 [{key, values}]
        if value is None:
            return {}
        if isinstance(value, list):
            return {
                t["key"]: tuple(t.get("values") or ())
                for t in value
                if isinstance(t, dict) and t.get("key")
            }
        return value

    def tag(self, key: str) -> Optional[str]:
        """取标签的第一个值"""
        values = self.tags.get(key)
        return values[0] if values else None


class ApmEntity(_EntityBase):
    domain: Literal["APM"] = "APM"


class InfraEntity(_EntityBase):
    domain: Literal["INFRA"] = "INFRA"


class RunningAgentVersions(_FrozenModel):
    """Browser 应用当前运行的 Agent 版本范围（原始值）"""
    min_version: Optional[Union[int, str]] = Field(default=None, alias="minVersion")
    max_version: Optional[Union[int, str]] = Field(default=None, alias="maxVersion")


class BrowserEntity(_EntityBase):
    domain: Literal["BROWSER"] = "BROWSER"
    running_agent_versions: Optional[RunningAgentVersions] = Field(
        default=None, alias="runningAgentVersions"
    )


class MobileEntity(_EntityBase):
    domain: Literal["MOBILE"] = "MOBILE"
    agent_version: Optional[str] = None  # 由 MobileVersionResolver 填充
    agent_type: Optional[str] = None  # IOS / ANDROID


Entity = Annotated[
    Union[ApmEntity, InfraEntity, BrowserEntity, MobileEntity],
    Field(discriminator="domain"),
]

_entity_adapter = TypeAdapter(Entity)


def parse_entity(raw: Dict[str, Any]) -> Entity:
    """把 NerdGraph 返回的实体字典解析为对应领域的模型"""
    return _entity_adapter.validate_python(raw)


# =============================================================================
# 输出事件
# =============================================================================

class OutdatedAgentRecord(BaseModel):
    """过期 Agent 事件（写入后不再修改）"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    event_type: str = EVENT_TYPE
    account_name: Optional[str] = None
    account_id: Optional[int] = None
    domain: Optional[str] = None
    agent_type: Optional[str] = None
    entity_name: Optional[str] = None
    entity_guid: Optional[str] = None
    current_version: Optional[str] = None
    current_version_release_date: Optional[datetime] = None
    current_version_age_in_days: Optional[int] = None
    latest_version: Optional[str] = None
    latest_version_release_date: Optional[datetime] = None
    extra_tags: Dict[str, Optional[str]] = Field(default_factory=dict)

    def to_event(self) -> Dict[str, Any]:
        """转换为 Event API 的 JSON 对象（camelCase，附加标签平铺）"""
        event = self.model_dump(mode="json", by_alias=True, exclude={"extra_tags"})
        for key, value in self.extra_tags.items():
            # 标签不覆盖核心字段
            event.setdefault(key, value)
        return event
