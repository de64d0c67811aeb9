"""
Digest formatting for #customer-alerts.

Formatting is pure: the same issues and ResolvedNames always render the same
text. An empty issue set renders as None so callers can skip posting.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from logging_config import get_logger
from oncall import mention_line
from pylon_read import (
    OPEN_STATES,
    Issue,
    get_my_issues,
    new_issues,
    open_issues,
    unresponded_issues,
    waiting_on_you,
)
from resolver import ResolvedNames
from slack_read import find_channel_id, thread_url

logger = get_logger(__name__)

DESC_SEPARATOR = " — "

STATE_LABELS = {
    "new": "new",
    "waiting_on_you": "waiting on you",
    "waiting_on_customer": "waiting on customer",
    "on_hold": "on hold",
}

NOTHING_TO_REPORT = "✅ no issues found!"


def timeframe(days: int) -> str:
    return "today" if days == 1 else f"the last {days} days"


def state_label(state: str) -> str:
    return STATE_LABELS.get(state, state)


def customer_identifier(issue: Issue, names: ResolvedNames) -> Optional[str]:
    if issue.account_id and names.account_names.get(issue.account_id):
        return names.account_names[issue.account_id]
    if issue.slack_channel_id and names.channel_names.get(issue.slack_channel_id):
        return f"#{names.channel_names[issue.slack_channel_id]}"
    return issue.requester_domain


def format_issue(issue: Issue, index: int, names: ResolvedNames, workspace_url: str) -> str:
    links = []
    if issue.slack_channel_id and issue.slack_message_ts:
        ts = issue.slack_thread_ts or issue.slack_message_ts
        links.append(f"<{thread_url(workspace_url, issue.slack_channel_id, ts)}|slack>")
    if issue.link:
        links.append(f"<{issue.link}|pylon>")
    links_part = f" ({' | '.join(links)})" if links else ""

    desc_parts = [p for p in (customer_identifier(issue, names), issue.title) if p]
    description = f" {DESC_SEPARATOR.join(desc_parts)}" if desc_parts else ""

    slack_id = names.assignee_slack_ids.get(issue.assignee_id) if issue.assignee_id else None
    assignee_part = f" <@{slack_id}>" if slack_id else ""

    return f"  {index + 1}.{description}{links_part}{assignee_part}"


def format_list(issues: Sequence[Issue], names: ResolvedNames, workspace_url: str) -> str:
    return "\n".join(format_issue(issue, n, names, workspace_url) for n, issue in enumerate(issues))


def group_by_state(issues: Sequence[Issue]) -> Dict[str, List[Issue]]:
    """Known open states first in a fixed order, then any others as first seen."""
    groups: Dict[str, List[Issue]] = {state: [] for state in OPEN_STATES}
    for issue in issues:
        groups.setdefault(issue.state, []).append(issue)
    return {state: items for state, items in groups.items() if items}


def format_sections(
    issues: Sequence[Issue],
    names: ResolvedNames,
    workspace_url: str,
    group_by: str = "state",
) -> Optional[str]:
    if not issues:
        return None
    if group_by == "none":
        return format_list(issues, names, workspace_url)
    if group_by != "state":
        raise ValueError(f"unknown grouping {group_by!r}")

    sections = [
        f"*{state_label(state)} ({len(items)})*\n{format_list(items, names, workspace_url)}"
        for state, items in group_by_state(issues).items()
    ]
    return "\n\n".join(sections)


def build_check_digest(
    new: Sequence[Issue],
    waiting: Sequence[Issue],
    names: ResolvedNames,
    days: int,
    workspace_url: str,
    mention: str = "",
) -> Optional[str]:
    sections = []
    if new:
        sections.append(f"*new issues ({len(new)})*\n{format_list(new, names, workspace_url)}")
    if waiting:
        sections.append(f"*waiting on you ({len(waiting)})*\n{format_list(waiting, names, workspace_url)}")
    if not sections:
        return None
    return f"{mention}*issues from {timeframe(days)}*\n\n" + "\n\n".join(sections)


def build_reminder_digest(
    issues: Sequence[Issue],
    names: ResolvedNames,
    workspace_url: str,
    mention: str = "",
) -> Optional[str]:
    body = format_sections(issues, names, workspace_url, group_by="state")
    if body is None:
        return None
    who = mention or "on-call engineers "
    return (
        f"*end of day reminder*\n\n"
        f"{who}the following {len(issues)} issue(s) from today are still open:\n\n"
        f"{body}\n\n"
        f"please review and resolve these issues."
    )


def build_unresponded_digest(
    issues: Sequence[Issue],
    names: ResolvedNames,
    days: int,
    workspace_url: str,
    mention: str = "",
) -> Optional[str]:
    body = format_sections(issues, names, workspace_url, group_by="none")
    if body is None:
        return None
    return (
        f"*unresponded threads*\n\n"
        f"{mention}the following {len(issues)} thread(s) from {timeframe(days)} have not been responded to:\n\n"
        f"{body}"
    )


class DigestService:
    """Fetch, resolve, format and (optionally) post. One instance per process."""

    def __init__(self, pylon, resolver, oncall, slack_client, alerts_channel: str, workspace_url: str):
        self.pylon = pylon
        self.resolver = resolver
        self.oncall = oncall
        self.client = slack_client
        self.alerts_channel = alerts_channel
        self.workspace_url = workspace_url
        self._alerts_channel_id: Optional[str] = None

    def alerts_channel_id(self) -> str:
        if self._alerts_channel_id is None:
            self._alerts_channel_id = find_channel_id(self.client, self.alerts_channel)
        return self._alerts_channel_id

    def _post(self, text: str) -> None:
        self.client.chat_postMessage(channel=self.alerts_channel_id(), text=text, unfurl_links=False)

    def _mention(self, tag_oncall: bool, fallback: str = "") -> str:
        if not tag_oncall:
            return fallback
        return mention_line(self.oncall.current_responders(), fallback)

    def _check_sets(self, show_new: bool, show_open: bool, days: int, assignee_email: Optional[str]):
        if assignee_email:
            issues = get_my_issues(self.pylon, self.resolver, days, assignee_email)
        else:
            issues = self.pylon.fetch_issues(days)
        new = new_issues(issues) if show_new else []
        waiting = waiting_on_you(issues) if show_open else []
        return new, waiting

    def check_message(
        self,
        show_new: bool = True,
        show_open: bool = True,
        days: int = 1,
        assignee_email: Optional[str] = None,
        tag_oncall: bool = False,
    ) -> Optional[str]:
        new, waiting = self._check_sets(show_new, show_open, days, assignee_email)
        if not new and not waiting:
            return None

        with ThreadPoolExecutor(max_workers=2) as ex:
            names_f = ex.submit(self.resolver.names_for, list(new) + list(waiting))
            mention_f = ex.submit(self._mention, tag_oncall)
            names, mention = names_f.result(), mention_f.result()
        return build_check_digest(new, waiting, names, days, self.workspace_url, mention)

    def send_check(self, tag_oncall: bool = False, **options) -> bool:
        message = self.check_message(tag_oncall=tag_oncall, **options)
        if message is None:
            logger.info("no issues found matching criteria, skipping message")
            return False
        self._post(message)
        logger.info("sent check message")
        return True

    def send_reminder(self) -> bool:
        issues = open_issues(self.pylon.fetch_issues(1))
        if not issues:
            logger.info("no open issues found, skipping reminder")
            return False

        names = self.resolver.names_for(issues)
        message = build_reminder_digest(issues, names, self.workspace_url, self._mention(True))
        self._post(message)
        logger.info("sent end of day reminder", extra={"count": len(issues)})
        return True

    def unresponded_message(self, days: int = 1, tag_oncall: bool = False) -> Optional[str]:
        issues = unresponded_issues(self.pylon.fetch_issues(days))
        if not issues:
            return None
        names = self.resolver.names_for(issues)
        return build_unresponded_digest(issues, names, days, self.workspace_url, self._mention(tag_oncall))

    def send_unresponded(self, tag_oncall: bool = False, days: int = 1) -> bool:
        message = self.unresponded_message(days, tag_oncall)
        if message is None:
            logger.info("no unresponded threads found, skipping message")
            return False
        self._post(message)
        logger.info("sent unresponded threads message", extra={"days": days})
        return True
