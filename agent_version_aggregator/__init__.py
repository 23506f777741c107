"""
Agent Version Aggregator - 过期 Agent 版本巡检

负责：
- 拉取各 Agent 类型的发布历史，得出最新版本
- 按领域（APM / INFRA / BROWSER / MOBILE）分页拉取实体清单
- 为移动端实体批量查询当前 Agent 版本
- 对比当前版本与最新版本，生成 OutdatedAgents 事件
- 将事件上报回平台
"""

__version__ = "1.0.0"
