import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, time as dtime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import requests

from errors import MalformedResponseError, UpstreamError
from logging_config import get_logger

logger = get_logger(__name__)

PYLON_BASE = "https://api.usepylon.com"

STATE_NEW = "new"
STATE_WAITING_ON_YOU = "waiting_on_you"
STATE_WAITING_ON_CUSTOMER = "waiting_on_customer"
STATE_ON_HOLD = "on_hold"

OPEN_NON_NEW_STATES = (STATE_WAITING_ON_YOU,)
OPEN_STATES = (STATE_NEW, STATE_WAITING_ON_YOU, STATE_WAITING_ON_CUSTOMER, STATE_ON_HOLD)
MY_ISSUE_STATES = (STATE_NEW,) + OPEN_NON_NEW_STATES


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class Issue:
    id: str
    number: Optional[int]
    title: str
    state: str
    created_at: str = ""
    first_response_time: Optional[str] = None
    link: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee_email: Optional[str] = None
    requester_email: Optional[str] = None
    slack_channel_id: Optional[str] = None
    slack_message_ts: Optional[str] = None
    slack_thread_ts: Optional[str] = None
    body_html: Optional[str] = None
    attachment_urls: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Issue":
        account = _obj(d.get("account"))
        assignee = _obj(d.get("assignee"))
        requester = _obj(d.get("requester"))
        slack = _obj(d.get("slack"))
        return cls(
            id=str(d.get("id") or ""),
            number=d.get("number"),
            title=str(d.get("title") or "").strip(),
            state=d.get("state") or "",
            created_at=d.get("created_at") or "",
            first_response_time=d.get("first_response_time"),
            link=d.get("link") or None,
            account_id=account.get("id") or None,
            account_name=account.get("name") or None,
            assignee_id=assignee.get("id") or None,
            assignee_email=assignee.get("email") or None,
            requester_email=requester.get("email") or None,
            slack_channel_id=slack.get("channel_id") or None,
            slack_message_ts=slack.get("message_ts") or None,
            slack_thread_ts=slack.get("thread_ts") or None,
            body_html=d.get("body_html") or None,
            attachment_urls=tuple(d.get("attachment_urls") or ()),
            raw=d,
        )

    @property
    def requester_domain(self) -> Optional[str]:
        if not self.requester_email or "@" not in self.requester_email:
            return None
        return self.requester_email.split("@", 1)[1] or None


def issue_window(
    days: int = 1, now: Optional[datetime] = None, tz: Optional[str] = None
) -> Tuple[datetime, datetime]:
    """
    [start of today - (days-1) days, start of tomorrow) as calendar days in
    ``tz``, or in the server's local zone when ``tz`` is None.

    Each bound is that day's own midnight, so a window spanning a DST change
    is an hour shorter or longer than whole days.
    """
    days = max(1, int(days))
    zone = ZoneInfo(tz) if tz else None
    now = now or datetime.now(timezone.utc)
    today = (now.astimezone(zone) if zone else now.astimezone()).date()

    def midnight(day):
        if zone:
            return datetime.combine(day, dtime(), tzinfo=zone)
        return datetime.combine(day, dtime()).astimezone()

    return midnight(today - timedelta(days=days - 1)), midnight(today + timedelta(days=1))


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class PylonClient:
    def __init__(
        self,
        token: str,
        base_url: str = PYLON_BASE,
        session: Optional[requests.Session] = None,
        tz: Optional[str] = None,
    ) -> None:
        self.token = (token or "").strip()
        if not self.token:
            raise RuntimeError("PYLON_API_TOKEN missing")
        self.base_url = base_url.rstrip("/")
        self.tz = tz
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        })

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        r = self.s.get(f"{self.base_url}{path}", params=params, timeout=30)
        if not r.ok:
            raise UpstreamError("pylon", r.status_code, r.text)
        try:
            return r.json()
        except ValueError:
            raise MalformedResponseError("pylon", f"non-json body from {path}: {r.text[:300]}")

    def fetch_issues(self, days: int = 1, now: Optional[datetime] = None) -> List[Issue]:
        """
        Issues created inside issue_window(days).

        Raises UpstreamError on a non-2xx response. A non-json body or one
        without a ``data`` list is logged and treated as no issues.
        """
        start, end = issue_window(days, now, self.tz)
        params = {"start_time": _iso_utc(start), "end_time": _iso_utc(end)}
        logger.info("fetching issues", extra={"days": days, **params})

        t0 = time.perf_counter()
        try:
            rows = _issue_rows(self._get("/issues", params=params))
        except MalformedResponseError as e:
            elapsed_ms = int((time.perf_counter() - t0) * 1000)
            logger.error(str(e), extra={"elapsed_ms": elapsed_ms})
            return []
        elapsed_ms = int((time.perf_counter() - t0) * 1000)

        issues = [Issue.from_dict(row) for row in rows]
        states = Counter(i.state for i in issues)
        logger.info(
            "fetched issues",
            extra={"count": len(issues), "elapsed_ms": elapsed_ms, "states": dict(states)},
        )
        return issues

    def fetch_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        """Single issue as a raw dict, or None on any failure."""
        try:
            data = self._get(f"/issues/{issue_id}")
        except (UpstreamError, MalformedResponseError, requests.RequestException) as e:
            logger.warning("could not fetch issue", extra={"issue_id": issue_id, "error": str(e)})
            return None
        issue = data.get("data")
        return issue if isinstance(issue, dict) else None

    def fetch_account_name(self, account_id: str) -> Optional[str]:
        data = self._get(f"/accounts/{account_id}")
        return _obj(data.get("data")).get("name") or None

    def fetch_user_email(self, user_id: str) -> Optional[str]:
        data = self._get(f"/users/{user_id}")
        return _obj(data.get("data")).get("email") or None


def _issue_rows(data: Any) -> List[Dict[str, Any]]:
    rows = data.get("data") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise MalformedResponseError("pylon", f"no data list in {str(data)[:300]}")
    return [row for row in rows if isinstance(row, dict)]


# ---- state views (pure, fetch order preserved) ----

def new_issues(issues: List[Issue]) -> List[Issue]:
    return [i for i in issues if i.state == STATE_NEW]


def waiting_on_you(issues: List[Issue]) -> List[Issue]:
    return [i for i in issues if i.state in OPEN_NON_NEW_STATES]


def open_issues(issues: List[Issue]) -> List[Issue]:
    return [i for i in issues if i.state in OPEN_STATES]


def unresponded_issues(issues: List[Issue]) -> List[Issue]:
    """
    New issues nobody has answered yet.

    A "new" issue that already has a first_response_time is a customer reply
    to a thread we started, so it is excluded.
    """
    fresh = new_issues(issues)
    out = [i for i in fresh if i.first_response_time is None]
    skipped = [i for i in fresh if i.first_response_time is not None]
    if skipped:
        logger.info(
            "excluded new issues that already have a first response",
            extra={"numbers": [i.number for i in skipped]},
        )
    logger.info("unresponded issues", extra={"total": len(issues), "new": len(fresh), "unresponded": len(out)})
    return out


def assigned_to(issues: List[Issue], email: str, emails_by_assignee: Dict[str, str]) -> List[Issue]:
    target = (email or "").strip().lower()
    out = []
    for i in issues:
        if i.state not in MY_ISSUE_STATES or not i.assignee_id:
            continue
        resolved = emails_by_assignee.get(i.assignee_id)
        if resolved and resolved.lower() == target:
            out.append(i)
    return out


def get_my_issues(client: PylonClient, resolver, days: int, email: str) -> List[Issue]:
    """Open issues from the window whose assignee resolves to ``email``."""
    issues = client.fetch_issues(days)
    relevant = [i for i in issues if i.state in MY_ISSUE_STATES]
    emails = resolver.assignee_emails_for(relevant)
    mine = assigned_to(relevant, email, emails)
    logger.info(
        "my issues",
        extra={"email": email, "relevant": len(relevant), "total": len(issues), "mine": len(mine)},
    )
    return mine
