"""
异常定义

每个异常携带失败的阶段名（stage），主程序据此输出“哪个阶段因何失败”。

- ReleaseFetchError 可恢复：单个 Agent 的版本拉取失败只记录日志
- 其余异常对本次运行是致命的，会在上报前中止
"""

from typing import Any, List, Optional


class AggregatorError(Exception):
    """聚合器异常基类"""

    stage = "aggregator"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class ConfigError(AggregatorError):
    """配置无效"""

    stage = "config"


class GraphQLError(AggregatorError):
    """GraphQL 响应中包含 errors 字段"""

    stage = "graphql"

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class ReleaseFetchError(AggregatorError):
    """单个 Agent 的发布历史拉取失败"""

    stage = "release-catalog"

    def __init__(self, agent_name: str, message: str):
        super().__init__(f"{agent_name}: {message}")
        self.agent_name = agent_name


class EntityFetchError(AggregatorError):
    """某个领域的实体清单拉取失败"""

    stage = "entity-inventory"

    def __init__(self, domain: str, message: str):
        super().__init__(f"{domain}: {message}")
        self.domain = domain


class PaginationLoopError(EntityFetchError):
    """分页游标重复出现（死循环）"""


class MobileVersionError(AggregatorError):
    """移动端版本批量查询失败"""

    stage = "mobile-versions"


class PublishError(AggregatorError):
    """事件上报返回非 2xx"""

    stage = "publish"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
