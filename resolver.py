"""
Identity resolution across Pylon and Slack.

Every id space gets its own BatchResolver and NameCache. A batch is split into
cache hits and misses, each miss is looked up on its own thread, and only
usable answers are cached. Failed lookups are logged and left out of the
result, so callers show the raw id instead.
"""

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from cache import NameCache
from errors import ResolutionMiss
from logging_config import get_logger

logger = get_logger(__name__)

MENTION_RE = re.compile(r"<@(U[A-Z0-9]+)>")


@dataclass
class ResolvedNames:
    account_names: Dict[str, str] = field(default_factory=dict)
    channel_names: Dict[str, str] = field(default_factory=dict)
    assignee_slack_ids: Dict[str, str] = field(default_factory=dict)


class BatchResolver:
    def __init__(self, kind: str, fetch: Callable[[str], Optional[str]], cache: Optional[NameCache] = None):
        self.kind = kind
        self.fetch = fetch
        self.cache = cache if cache is not None else NameCache()

    def _lookup(self, key: str) -> Optional[str]:
        try:
            value = self.fetch(key)
            if not value:
                raise ResolutionMiss(self.kind, key)
        except Exception as e:
            logger.warning("lookup failed", extra={"kind": self.kind, "key": key, "error": repr(e)})
            return None
        self.cache.set(key, value)
        return value

    def resolve_many(self, keys: Iterable[str]) -> Dict[str, str]:
        out: Dict[str, str] = {}
        misses: List[str] = []
        for key in dict.fromkeys(k for k in keys if k):
            hit = self.cache.get(key)
            if hit is not None:
                out[key] = hit
            else:
                misses.append(key)

        if not misses:
            return out

        logger.debug("resolving", extra={"kind": self.kind, "hits": len(out), "misses": len(misses)})
        with ThreadPoolExecutor(max_workers=len(misses)) as ex:
            for key, value in zip(misses, ex.map(self._lookup, misses)):
                if value:
                    out[key] = value
        return out

    def resolve_one(self, key: str) -> Optional[str]:
        return self.resolve_many([key]).get(key)


def _slack_user_name(slack_client, user_id: str) -> Optional[str]:
    user = slack_client.users_info(user=user_id).get("user") or {}
    return user.get("real_name") or user.get("name") or None


def _slack_id_by_email(slack_client, email: str) -> Optional[str]:
    user = slack_client.users_lookupByEmail(email=email).get("user") or {}
    return user.get("id") or None


def _channel_name(slack_client, channel_id: str) -> Optional[str]:
    channel = slack_client.conversations_info(channel=channel_id).get("channel") or {}
    return channel.get("name") or None


class IdentityResolver:
    """
    Owns one resolver per id space. Build once at startup and pass it around.
    """

    def __init__(self, pylon, slack_client, cache_factory: Optional[Callable[[], NameCache]] = None):
        make = cache_factory or NameCache
        self.accounts = BatchResolver("account", pylon.fetch_account_name, make())
        self.helpdesk_emails = BatchResolver("pylon_user", pylon.fetch_user_email, make())
        self.slack_names = BatchResolver("slack_user", lambda uid: _slack_user_name(slack_client, uid), make())
        self.slack_ids_by_email = BatchResolver("slack_email", lambda email: _slack_id_by_email(slack_client, email), make())
        self.channel_names = BatchResolver("slack_channel", lambda cid: _channel_name(slack_client, cid), make())

    def account_names_for(self, issues) -> Dict[str, str]:
        return self.accounts.resolve_many(i.account_id for i in issues)

    def assignee_emails_for(self, issues) -> Dict[str, str]:
        return self.helpdesk_emails.resolve_many(i.assignee_id for i in issues)

    def channel_names_for(self, issues) -> Dict[str, str]:
        return self.channel_names.resolve_many(i.slack_channel_id for i in issues)

    def assignee_slack_ids_for(self, issues) -> Dict[str, str]:
        """pylon assignee id -> email -> slack user id"""
        emails = self.assignee_emails_for(issues)
        slack_ids = self.slack_ids_by_email.resolve_many(emails.values())
        return {aid: slack_ids[email] for aid, email in emails.items() if email in slack_ids}

    def names_for(self, issues) -> ResolvedNames:
        issues = list(issues)
        with ThreadPoolExecutor(max_workers=3) as ex:
            channels = ex.submit(self.channel_names_for, issues)
            accounts = ex.submit(self.account_names_for, issues)
            assignees = ex.submit(self.assignee_slack_ids_for, issues)
            return ResolvedNames(
                account_names=accounts.result(),
                channel_names=channels.result(),
                assignee_slack_ids=assignees.result(),
            )

    def resolve_mentions(self, text: str) -> str:
        ids = MENTION_RE.findall(text or "")
        if not ids:
            return text
        names = self.slack_names.resolve_many(ids)
        return MENTION_RE.sub(lambda m: names.get(m.group(1), m.group(1)), text)
