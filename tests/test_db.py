from __future__ import annotations

from uptime_monitor import db as dbm


def test_list_monitors_scoped_to_owner(config) -> None:
    a = dbm.create_monitor(config, name="a", url="http://a.test/", created_by=1)
    b = dbm.create_monitor(config, name="b", url="http://b.test/", created_by=2)
    c = dbm.create_monitor(config, name="c", url="http://c.test/", created_by=1)

    assert [m.id for m in dbm.list_monitors(config, user_id=1)] == [a.id, c.id]
    assert [m.id for m in dbm.list_monitors(config, user_id=2)] == [b.id]
    assert [m.id for m in dbm.list_monitors(config)] == [a.id, b.id, c.id]


def test_delete_notification_settings_only_for_owner(config) -> None:
    dbm.create_or_update_settings(config, user_id=1, target_type="monitor", target_id=5, channels=[1])

    assert dbm.delete_notification_settings(config, target_type="monitor", target_id=5, user_id=2) == 0
    assert dbm.get_specific_settings(config, user_id=1, target_type="monitor", target_id=5)

    assert dbm.delete_notification_settings(config, target_type="monitor", target_id=5, user_id=1) == 1
    assert dbm.get_specific_settings(config, user_id=1, target_type="monitor", target_id=5) == []


def test_update_and_delete_channel_only_for_owner(config) -> None:
    cid = dbm.create_notification_channel(
        config, name="tg", type="telegram", channel_config={"botToken": "", "chatId": ""}, enabled=False, created_by=1
    )

    assert dbm.update_notification_channel(config, channel_id=cid, user_id=2, patch={"enabled": True}) is False
    assert dbm.get_notification_channel(config, channel_id=cid, user_id=1).enabled is False

    patch = {"name": "ops", "config": {"botToken": "T", "chatId": "42"}, "enabled": True}
    assert dbm.update_notification_channel(config, channel_id=cid, user_id=1, patch=patch) is True
    stored = dbm.get_notification_channel(config, channel_id=cid, user_id=1)
    assert stored.name == "ops"
    assert stored.enabled is True
    assert "42" in str(stored.config)

    assert dbm.update_notification_channel(config, channel_id=cid, user_id=1, patch={}) is False

    assert dbm.delete_notification_channel(config, channel_id=cid, user_id=2) is False
    assert dbm.delete_notification_channel(config, channel_id=cid, user_id=1) is True
    assert dbm.get_notification_channel(config, channel_id=cid, user_id=1) is None


def _template(config, name: str, *, type: str = "monitor", user_id: int = 1, is_default: bool = False) -> int:
    return dbm.create_notification_template(
        config, name=name, type=type, subject="s", content="c", is_default=is_default, created_by=user_id
    )


def _defaults(config, user_id: int) -> list[tuple[str, str]]:
    return [(t.type, t.name) for t in dbm.list_notification_templates(config, user_id=user_id) if t.is_default]


def test_one_default_template_per_owner_and_type(config) -> None:
    _template(config, "first", is_default=True)
    second = _template(config, "second")
    _template(config, "agent", type="agent", is_default=True)
    _template(config, "other-user", user_id=2, is_default=True)

    assert sorted(_defaults(config, 1)) == [("agent", "agent"), ("monitor", "first")]

    assert dbm.update_notification_template(config, template_id=second, user_id=1, patch={"is_default": True}) is True
    assert sorted(_defaults(config, 1)) == [("agent", "agent"), ("monitor", "second")]
    assert _defaults(config, 2) == [("monitor", "other-user")]

    _template(config, "third", is_default=True)
    assert sorted(_defaults(config, 1)) == [("agent", "agent"), ("monitor", "third")]


def test_update_and_delete_template_only_for_owner(config) -> None:
    tid = _template(config, "mine")

    assert dbm.update_notification_template(config, template_id=tid, user_id=2, patch={"subject": "x"}) is False
    assert dbm.update_notification_template(config, template_id=tid, user_id=1, patch={"subject": "[${status}]"}) is True
    assert dbm.list_notification_templates(config, user_id=1)[0].subject == "[${status}]"

    assert dbm.delete_notification_template(config, template_id=tid, user_id=2) is False
    assert dbm.delete_notification_template(config, template_id=tid, user_id=1) is True
    assert dbm.list_notification_templates(config, user_id=1) == []


def test_set_agent_inactive_loses_to_newer_heartbeat(config) -> None:
    agent = dbm.create_agent(config, name="box", created_by=1, updated_at_ts=1000.0)
    dbm.touch_agent(config, agent_id=agent.id, now_ts=2000.0)

    assert dbm.set_agent_inactive(config, agent_id=agent.id, seen_updated_at_ts=1000.0) is False
    assert dbm.get_agent(config, agent_id=agent.id).status == "active"

    assert dbm.set_agent_inactive(config, agent_id=agent.id, seen_updated_at_ts=2000.0) is True
    assert dbm.set_agent_inactive(config, agent_id=agent.id) is False
