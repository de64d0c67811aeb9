"""On-call responder lookup: incident.io schedules or Slack user-group handles."""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import requests

from errors import MalformedResponseError, UpstreamError
from logging_config import get_logger

logger = get_logger(__name__)

INCIDENT_IO_SCHEDULE_ENTRIES = "https://api.incident.io/v2/schedule_entries"


class OncallResolver(Protocol):
    def current_responders(self) -> List[str]:
        """Slack mention tokens for whoever is on call right now."""
        ...


def dedupe(tokens: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(t for t in tokens if t))


def mention_line(responders: Sequence[str], fallback: str = "") -> str:
    return " ".join(responders) + " " if responders else fallback


class ScheduleOncallResolver:
    """One incident.io schedule per team; the first entry covering now wins."""

    def __init__(self, api_key: str, schedule_ids: Dict[str, str], session: Optional[requests.Session] = None):
        self.schedule_ids = dict(schedule_ids)
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def current_user(self, team: str, schedule_id: str, now: Optional[datetime] = None) -> Optional[str]:
        now = now or datetime.now(timezone.utc)
        params = {
            "schedule_id": schedule_id,
            "entry_window_start": now.isoformat(),
            # a minute ahead so the entry covering "now" is always returned
            "entry_window_end": (now + timedelta(seconds=60)).isoformat(),
        }
        r = self.s.get(INCIDENT_IO_SCHEDULE_ENTRIES, params=params, timeout=30)
        if not r.ok:
            raise UpstreamError("incident.io", r.status_code, r.text)

        try:
            entries = r.json()["schedule_entries"]["final"]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError("incident.io", repr(e))

        if not entries:
            logger.warning("no on-call entry for the current window", extra={"team": team})
            return None

        user = entries[0].get("user") or {}
        slack_id = user.get("slack_user_id")
        if not slack_id:
            logger.warning(
                "on-call engineer has no slack user id in incident.io",
                extra={"team": team, "user": user.get("name")},
            )
            return None
        return slack_id

    def current_responders(self, now: Optional[datetime] = None) -> List[str]:
        tokens = []
        for team, schedule_id in self.schedule_ids.items():
            try:
                slack_id = self.current_user(team, schedule_id, now)
            except Exception as e:
                logger.error("on-call lookup failed", extra={"team": team, "error": repr(e)})
                continue
            if slack_id:
                tokens.append(f"<@{slack_id}>")
        return dedupe(tokens)


class GroupHandleOncallResolver:
    """Mention Slack user groups (e.g. @sdk-oncall) whose membership rotates."""

    def __init__(self, slack_client, handles: Sequence[str]):
        self.client = slack_client
        self.handles = tuple(h.lstrip("@") for h in handles)
        self._group_ids: Optional[Dict[str, str]] = None
        self._lock = Lock()

    def group_ids(self) -> Dict[str, str]:
        with self._lock:
            if self._group_ids is not None:
                return self._group_ids
            resp = self.client.usergroups_list()
            ids = {g["handle"]: g["id"] for g in resp.get("usergroups", []) or [] if g.get("handle") and g.get("id")}
            # only a successful listing is kept
            self._group_ids = ids
            return ids

    def current_responders(self) -> List[str]:
        try:
            ids = self.group_ids()
        except Exception as e:
            logger.error("could not list slack user groups", extra={"error": repr(e)})
            ids = {}

        tokens = []
        for handle in self.handles:
            gid = ids.get(handle)
            if gid:
                tokens.append(f"<!subteam^{gid}>")
            else:
                logger.warning("user group not found, using plain handle", extra={"handle": handle})
                tokens.append(f"@{handle}")
        return dedupe(tokens)


def build_oncall_resolver(config, slack_client) -> OncallResolver:
    if config.oncall_strategy == "schedule":
        return ScheduleOncallResolver(config.incident_io_api_key, config.incident_io_schedule_ids)
    return GroupHandleOncallResolver(slack_client, config.oncall_group_handles)
