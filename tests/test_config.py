"""
Environment validation.

Run with: pytest tests/test_config.py -v
"""

import pytest

from config import load_config, parse_schedule_ids

BASE_ENV = {
    "SLACK_BOT_TOKEN": "xoxb-1",
    "SLACK_APP_TOKEN": "xapp-1",
    "PYLON_API_TOKEN": "pylon",
    "PYLON_WEBHOOK_SECRET": "secret",
    "DEVIN_SLACK_USER_ID": "UDEVIN",
    "DEVIN_TRIAGE_CHANNEL": "CTRIAGE",
    "OPENAI_API_KEY": "sk-1",
}


def test_defaults():
    cfg = load_config(dict(BASE_ENV))
    assert cfg.oncall_strategy == "groups"
    assert cfg.oncall_group_handles == ("sdk-oncall", "docs-oncall")
    assert cfg.alerts_channel == "customer-alerts"
    assert cfg.webhook_port == 3000
    assert cfg.command == "/rooster"
    assert cfg.workspace_url is None
    assert cfg.cache_max_size is None
    assert cfg.cache_ttl_seconds is None


def test_missing_keys_all_named():
    env = dict(BASE_ENV)
    del env["PYLON_API_TOKEN"]
    env["OPENAI_API_KEY"] = "  "
    with pytest.raises(RuntimeError) as exc:
        load_config(env)
    assert "PYLON_API_TOKEN" in str(exc.value)
    assert "OPENAI_API_KEY" in str(exc.value)


def test_schedule_strategy_requires_incident_io():
    with pytest.raises(RuntimeError) as exc:
        load_config(dict(BASE_ENV, ONCALL_STRATEGY="schedule"))
    assert "INCIDENT_IO_API_KEY" in str(exc.value)
    assert "INCIDENT_IO_SCHEDULE_IDS" in str(exc.value)


def test_unknown_strategy():
    with pytest.raises(RuntimeError):
        load_config(dict(BASE_ENV, ONCALL_STRATEGY="pagerduty"))


def test_overrides():
    cfg = load_config(dict(
        BASE_ENV,
        ONCALL_GROUP_HANDLES="@api-oncall, cli-oncall",
        ALERTS_CHANNEL="#support-alerts",
        WEBHOOK_PORT="8080",
        ROOSTER_COMMAND="rooster-dev",
        SLACK_WORKSPACE_URL="https://acme.slack.com/",
        NAME_CACHE_MAX_SIZE="1000",
        NAME_CACHE_TTL_SECONDS="3600",
    ))
    assert cfg.oncall_group_handles == ("api-oncall", "cli-oncall")
    assert cfg.alerts_channel == "support-alerts"
    assert cfg.webhook_port == 8080
    assert cfg.command == "/rooster-dev"
    assert cfg.workspace_url == "https://acme.slack.com"
    assert cfg.cache_max_size == 1000
    assert cfg.cache_ttl_seconds == 3600


def test_bad_port():
    with pytest.raises(RuntimeError):
        load_config(dict(BASE_ENV, WEBHOOK_PORT="eighty"))


def test_parse_schedule_ids():
    assert parse_schedule_ids("sdk:01ABC, docs:01DEF") == {"sdk": "01ABC", "docs": "01DEF"}
    with pytest.raises(RuntimeError):
        parse_schedule_ids("sdk")
