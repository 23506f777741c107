"""
单元测试：版本对账

测试覆盖：
- APM 端到端场景（版本年龄按当前版本自身的发布日期计算）
- 多语言 APM 领域按实体解析 agent_name
- Browser 旧版号、移动端版本
- 附加标签、发布日期未知时年龄为 None
- 未过期 / 不可比较的实体被跳过
"""

from datetime import datetime, timedelta, timezone

from agent_version_aggregator.models import (
    Domain,
    ReleaseCatalog,
    ReleaseRecord,
    parse_entity,
)
from agent_version_aggregator.reconciler import (
    age_in_days,
    current_version_of,
    reconcile,
    resolve_agent_name,
)
from agent_version_aggregator.releases import reduce_latest_releases

from conftest import entity_dict, make_config

NOW = datetime(2024, 6, 11, 8, 0, tzinfo=timezone.utc)


def _catalog(*records):
    records = tuple(
        ReleaseRecord(agent_name=a, domain=d, version=v, date=dt) for a, d, v, dt in records
    )
    return ReleaseCatalog(records=records, latest=reduce_latest_releases(records))


APM_CATALOG = _catalog(
    ("JAVA", Domain.APM, "1.2.0", "2024-01-01"),
    ("JAVA", Domain.APM, "1.5.0", "2024-06-01"),
    ("PYTHON", Domain.APM, "9.0.0", "2024-03-01"),
    ("PYTHON", Domain.APM, "9.1.0", "2024-05-01"),
)


class TestReconcileApm:

    def test_outdated_entity_end_to_end(self):
        """测试：1.2.0 < 1.5.0（10 天前发布）生成过期事件"""
        config = make_config(("JAVA", Domain.APM), tags_to_include=("language", "team"))
        entity = parse_entity(entity_dict(
            "APM", "guid-e", account_id=7, name="checkout",
            tags={"agentVersion": "1.2.0", "language": "java"},
        ))

        records = reconcile([entity], APM_CATALOG, config, now=NOW)

        assert len(records) == 1
        record = records[0]
        assert record.latest_version == "1.5.0"
        assert record.latest_version_release_date == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert record.current_version == "1.2.0"
        assert record.agent_type == "JAVA"
        # 2024-01-01 -> 2024-06-11：162 天
        assert record.current_version_age_in_days == 162

        event = record.to_event()
        assert event["eventType"] == "OutdatedAgents"
        assert event["accountName"] == "Account 7"
        assert event["accountId"] == 7
        assert event["domain"] == "APM"
        assert event["agentType"] == "JAVA"
        assert event["entityName"] == "checkout"
        assert event["entityGuid"] == "guid-e"
        assert event["latestVersion"] == "1.5.0"
        assert event["currentVersionAgeInDays"] == 162
        assert event["language"] == "java"
        assert event["team"] is None

    def test_language_tag_selects_release_line(self):
        """测试：APM 多语言时按 language 标签选择最新版本"""
        config = make_config(("JAVA", Domain.APM), ("PYTHON", Domain.APM))
        entity = parse_entity(entity_dict(
            "APM", "py", tags={"agentVersion": "9.0.0", "language": "python"},
        ))

        records = reconcile([entity], APM_CATALOG, config, now=NOW)

        assert [r.agent_type for r in records] == ["PYTHON"]
        assert records[0].latest_version == "9.1.0"

    def test_up_to_date_and_newer_are_skipped(self):
        config = make_config(("JAVA", Domain.APM))
        entities = [
            parse_entity(entity_dict("APM", "same", tags={"agentVersion": "1.5.0", "language": "java"})),
            parse_entity(entity_dict("APM", "newer", tags={"agentVersion": "1.6.0", "language": "java"})),
            parse_entity(entity_dict("APM", "none", tags={"language": "java"})),
        ]

        assert reconcile(entities, APM_CATALOG, config, now=NOW) == []

    def test_unknown_release_date_gives_null_age(self):
        """测试：当前版本不在发布目录中时，发布日期与年龄为 None"""
        config = make_config(("JAVA", Domain.APM))
        entity = parse_entity(entity_dict(
            "APM", "old", tags={"agentVersion": "1.0.0", "language": "java"},
        ))

        record = reconcile([entity], APM_CATALOG, config, now=NOW)[0]

        assert record.current_version_release_date is None
        assert record.current_version_age_in_days is None

    def test_agent_without_latest_release_is_skipped(self):
        """测试：发布目录拉取失败的 Agent 不参与对账"""
        config = make_config(("RUBY", Domain.APM))
        entity = parse_entity(entity_dict(
            "APM", "rb", tags={"agentVersion": "1.0.0", "language": "ruby"},
        ))

        assert reconcile([entity], APM_CATALOG, config, now=NOW) == []

    def test_output_keeps_entity_order(self):
        config = make_config(("JAVA", Domain.APM))
        entities = [
            parse_entity(entity_dict("APM", f"e{i}", tags={"agentVersion": "1.2.0", "language": "java"}))
            for i in range(5)
        ]

        records = reconcile(entities, APM_CATALOG, config, now=NOW)

        assert [r.entity_guid for r in records] == ["e0", "e1", "e2", "e3", "e4"]


class TestReconcileOtherDomains:

    def test_infra_single_agent(self):
        catalog = _catalog(
            ("INFRASTRUCTURE", Domain.INFRA, "1.50.0", "2024-01-10"),
            ("INFRASTRUCTURE", Domain.INFRA, "1.52.0", "2024-05-10"),
        )
        config = make_config(("INFRASTRUCTURE", Domain.INFRA))
        entity = parse_entity(entity_dict("INFRA", "host-1", tags={"agentVersion": "1.50.0"}))

        record = reconcile([entity], catalog, config, now=NOW)[0]

        assert record.agent_type == "INFRASTRUCTURE"
        assert record.current_version_release_date == datetime(2024, 1, 10, tzinfo=timezone.utc)

    def test_browser_legacy_running_version(self):
        """测试：Browser 旧版号始终早于点分的最新版本"""
        catalog = _catalog(
            ("BROWSER", Domain.BROWSER, "1216", "2021-01-01"),
            ("BROWSER", Domain.BROWSER, "1.260.0", "2024-06-01"),
        )
        config = make_config(("BROWSER", Domain.BROWSER))
        entity = parse_entity(entity_dict(
            "BROWSER", "web-1",
            runningAgentVersions={"minVersion": 1216, "maxVersion": 1308},
        ))

        assert current_version_of(entity) == "1216"
        record = reconcile([entity], catalog, config, now=NOW)[0]
        assert record.current_version == "1216"
        assert record.latest_version == "1.260.0"
        assert record.current_version_age_in_days is not None

    def test_browser_without_running_versions_is_skipped(self):
        catalog = _catalog(("BROWSER", Domain.BROWSER, "1.260.0", "2024-06-01"))
        config = make_config(("BROWSER", Domain.BROWSER))
        entity = parse_entity(entity_dict("BROWSER", "web-2"))

        assert reconcile([entity], catalog, config, now=NOW) == []

    def test_mobile_uses_resolved_platform(self):
        catalog = _catalog(
            ("IOS", Domain.MOBILE, "7.4.0", "2024-02-01"),
            ("IOS", Domain.MOBILE, "7.5.0", "2024-06-01"),
            ("ANDROID", Domain.MOBILE, "7.4.0", "2024-03-01"),
            ("ANDROID", Domain.MOBILE, "7.4.0", "2024-03-01"),
        )
        config = make_config(("IOS", Domain.MOBILE), ("ANDROID", Domain.MOBILE))
        ios = parse_entity(entity_dict("MOBILE", "m1")).model_copy(
            update={"agent_version": "7.4.0", "agent_type": "IOS"}
        )
        android = parse_entity(entity_dict("MOBILE", "m2")).model_copy(
            update={"agent_version": "7.4.0", "agent_type": "ANDROID"}
        )

        records = reconcile([ios, android], catalog, config, now=NOW)

        assert [r.entity_guid for r in records] == ["m1"]
        assert records[0].agent_type == "IOS"
        assert records[0].latest_version == "7.5.0"

    def test_mobile_without_version_produces_nothing(self):
        catalog = _catalog(("IOS", Domain.MOBILE, "7.5.0", "2024-06-01"))
        config = make_config(("IOS", Domain.MOBILE))
        entity = parse_entity(entity_dict("MOBILE", "m1"))

        assert reconcile([entity], catalog, config, now=NOW) == []


class TestHelpers:

    def test_resolve_by_release_version(self):
        """测试：没有语言标签时按发布记录的版本号确定 Agent"""
        config = make_config(("JAVA", Domain.APM), ("PYTHON", Domain.APM))
        entity = parse_entity(entity_dict("APM", "x", tags={"agentVersion": "9.0.0"}))

        assert resolve_agent_name(entity, "9.0.0", APM_CATALOG, config) == "PYTHON"
        assert resolve_agent_name(entity, "0.0.1", APM_CATALOG, config) is None

    def test_age_in_days(self):
        assert age_in_days(None, NOW) is None
        assert age_in_days(NOW - timedelta(days=10, hours=3), NOW) == 10
        assert age_in_days(NOW - timedelta(hours=5), NOW) == 0
