"""
配置加载模块

从 config.yaml 加载配置，使用 Pydantic 校验；凭据从环境变量读取。

加载后的 AppConfig 是只读的，由主程序显式传给各个组件，组件内部不读取全局状态。
"""

import os
from pathlib import Path
from typing import Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import AgentSpec, Domain


DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_PATH_ENV = "AGENT_VERSION_CONFIG"

# 默认检查的 Agent 列表，注释掉或删除对应项即可排除
DEFAULT_AGENTS: Tuple[AgentSpec, ...] = (
    AgentSpec(agent_name="DOTNET", domain=Domain.APM),
    AgentSpec(agent_name="GO", domain=Domain.APM),
    AgentSpec(agent_name="JAVA", domain=Domain.APM),
    AgentSpec(agent_name="NODEJS", domain=Domain.APM),
    AgentSpec(agent_name="PHP", domain=Domain.APM),
    AgentSpec(agent_name="PYTHON", domain=Domain.APM),
    AgentSpec(agent_name="RUBY", domain=Domain.APM),
    AgentSpec(agent_name="INFRASTRUCTURE", domain=Domain.INFRA),
    AgentSpec(agent_name="BROWSER", domain=Domain.BROWSER),
    AgentSpec(agent_name="IOS", domain=Domain.MOBILE),
    AgentSpec(agent_name="ANDROID", domain=Domain.MOBILE),
)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class APIConfig(_FrozenModel):
    """NerdGraph / Event API 端点配置"""
    graphql_url: str = "https://api.newrelic.com/graphql"
    events_url: str = "https://insights-collector.newrelic.com/v1/accounts/{account_id}/events"
    timeout: float = 30.0


class CollectorConfig(_FrozenModel):
    """采集配置"""
    max_concurrency: int = Field(default=25, ge=1)
    mobile_batch_size: int = Field(default=5, ge=1)
    mobile_since: str = "1 day ago"
    nrql_timeout: int = Field(default=120, ge=1)


class LoggingConfig(_FrozenModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 50
    backup_count: int = 5


class Credentials(BaseSettings):
    """
    凭据（只从环境变量读取，不写入配置文件）

    - NEW_RELIC_USER_KEY: 查询 NerdGraph 用的 User Key
    - NEW_RELIC_INGEST_KEY: 写入事件用的 Ingest (Insert) Key
    - NEW_RELIC_ACCOUNT_ID: 可选，覆盖配置文件中的 account_id
    """
    model_config = SettingsConfigDict(env_prefix="NEW_RELIC_", frozen=True)

    user_key: str = ""
    ingest_key: str = ""
    account_id: Optional[int] = None


class AppConfig(_FrozenModel):
    """应用配置（完整配置）"""
    account_id: int = 0
    agents: Tuple[AgentSpec, ...] = DEFAULT_AGENTS
    tags_to_include: Tuple[str, ...] = ("language", "team")
    entity_search_filter: str = "reporting is true"
    api: APIConfig = Field(default_factory=APIConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    credentials: Credentials = Field(default_factory=Credentials)

    @property
    def domains(self) -> Tuple[Domain, ...]:
        """配置中出现的领域（按首次出现顺序去重）"""
        seen = []
        for agent in self.agents:
            if agent.domain not in seen:
                seen.append(agent.domain)
        return tuple(seen)

    def agents_in(self, domain: Domain) -> Tuple[AgentSpec, ...]:
        """某个领域下配置的 Agent"""
        return tuple(a for a in self.agents if a.domain == domain)

    def has_agent(self, agent_name: str) -> bool:
        return any(a.agent_name == agent_name for a in self.agents)

    @property
    def events_endpoint(self) -> str:
        return self.api.events_url.format(account_id=self.account_id)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 AGENT_VERSION_CONFIG
    3. 默认路径 config.yaml

    配置文件不存在时使用默认配置；凭据始终来自环境变量。

    Raises:
        ConfigError: YAML 解析失败或字段校验失败
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)

    raw_config = {}
    config_file = Path(config_path)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {config_file}: {e}") from e
        if not isinstance(raw_config, dict):
            raise ConfigError(f"{config_file} must contain a mapping at top level")

    # 凭据不允许出现在配置文件里
    raw_config.pop("credentials", None)

    try:
        credentials = Credentials()
        if credentials.account_id is not None:
            raw_config["account_id"] = credentials.account_id
        config = AppConfig(**raw_config, credentials=credentials)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if not config.agents:
        raise ConfigError("At least one agent must be configured")
    return config
