import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

REQUIRED_KEYS = (
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
    "PYLON_API_TOKEN",
    "PYLON_WEBHOOK_SECRET",
    "DEVIN_SLACK_USER_ID",
    "DEVIN_TRIAGE_CHANNEL",
    "OPENAI_API_KEY",
)

SCHEDULE_KEYS = ("INCIDENT_IO_API_KEY", "INCIDENT_IO_SCHEDULE_IDS")

ONCALL_STRATEGIES = ("groups", "schedule")


@dataclass(frozen=True)
class Config:
    slack_bot_token: str
    slack_app_token: str
    pylon_api_token: str
    pylon_webhook_secret: str
    devin_user_id: str
    triage_channel: str
    openai_api_key: str
    openai_model: str = "gpt-4o"
    oncall_strategy: str = "groups"
    oncall_group_handles: Tuple[str, ...] = ("sdk-oncall", "docs-oncall")
    incident_io_api_key: Optional[str] = None
    incident_io_schedule_ids: Dict[str, str] = field(default_factory=dict)
    alerts_channel: str = "customer-alerts"
    webhook_port: int = 3000
    command: str = "/rooster"
    workspace_url: Optional[str] = None
    timezone: str = "America/New_York"
    cache_max_size: Optional[int] = None
    cache_ttl_seconds: Optional[int] = None


def _env(environ, key: str) -> str:
    return (environ.get(key) or "").strip()


def _optional_int(environ, key: str) -> Optional[int]:
    raw = _env(environ, key)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer, got {raw!r}")


def parse_csv(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def parse_schedule_ids(raw: str) -> Dict[str, str]:
    """Parse ``team:schedule_id,team:schedule_id`` into a dict."""
    out: Dict[str, str] = {}
    for part in parse_csv(raw):
        team, sep, schedule_id = part.partition(":")
        if not sep or not team.strip() or not schedule_id.strip():
            raise RuntimeError(f"INCIDENT_IO_SCHEDULE_IDS entry {part!r} is not team:schedule_id")
        out[team.strip()] = schedule_id.strip()
    return out


def load_config(environ=None) -> Config:
    """
    Build the process config from the environment.

    Raises RuntimeError naming every missing required key at once.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    strategy = _env(environ, "ONCALL_STRATEGY").lower() or "groups"
    if strategy not in ONCALL_STRATEGIES:
        raise RuntimeError(f"ONCALL_STRATEGY must be one of {ONCALL_STRATEGIES}, got {strategy!r}")

    required = list(REQUIRED_KEYS)
    if strategy == "schedule":
        required.extend(SCHEDULE_KEYS)

    missing = [key for key in required if not _env(environ, key)]
    if missing:
        raise RuntimeError(f"missing required environment variable(s): {', '.join(missing)}")

    handles = tuple(h.lstrip("@") for h in parse_csv(_env(environ, "ONCALL_GROUP_HANDLES")))

    port = _optional_int(environ, "WEBHOOK_PORT")

    command = _env(environ, "ROOSTER_COMMAND") or "/rooster"
    if not command.startswith("/"):
        command = "/" + command

    return Config(
        slack_bot_token=_env(environ, "SLACK_BOT_TOKEN"),
        slack_app_token=_env(environ, "SLACK_APP_TOKEN"),
        pylon_api_token=_env(environ, "PYLON_API_TOKEN"),
        pylon_webhook_secret=_env(environ, "PYLON_WEBHOOK_SECRET"),
        devin_user_id=_env(environ, "DEVIN_SLACK_USER_ID"),
        triage_channel=_env(environ, "DEVIN_TRIAGE_CHANNEL"),
        openai_api_key=_env(environ, "OPENAI_API_KEY"),
        openai_model=_env(environ, "OPENAI_MODEL") or "gpt-4o",
        oncall_strategy=strategy,
        oncall_group_handles=handles or ("sdk-oncall", "docs-oncall"),
        incident_io_api_key=_env(environ, "INCIDENT_IO_API_KEY") or None,
        incident_io_schedule_ids=parse_schedule_ids(_env(environ, "INCIDENT_IO_SCHEDULE_IDS")),
        alerts_channel=(_env(environ, "ALERTS_CHANNEL") or "customer-alerts").lstrip("#"),
        webhook_port=port if port is not None else 3000,
        command=command,
        workspace_url=(_env(environ, "SLACK_WORKSPACE_URL").rstrip("/") or None),
        timezone=_env(environ, "TZ") or "America/New_York",
        cache_max_size=_optional_int(environ, "NAME_CACHE_MAX_SIZE"),
        cache_ttl_seconds=_optional_int(environ, "NAME_CACHE_TTL_SECONDS"),
    )
