from typing import Callable, Dict, List, Optional

from logging_config import get_logger
from resolver import MENTION_RE

logger = get_logger(__name__)


def thread_url(workspace_url: str, channel_id: str, ts: str) -> str:
    # deep links drop the dot from the message ts and prefix it with "p"
    return f"{workspace_url.rstrip('/')}/archives/{channel_id}/p{ts.replace('.', '')}"


def best_effort(what: str, fn: Callable, *args, **kwargs):
    """
    Run a cosmetic Slack side effect (reaction, cross-link) in its own error
    boundary. Returns the call's result, or None if it failed.
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.info("best-effort step failed", extra={"step": what, "error": repr(e)})
        return None


def find_channel_id(slack_client, name: str) -> str:
    """Page through public channels until one is called ``name``."""
    cursor = None
    while True:
        resp = slack_client.conversations_list(types="public_channel", limit=200, cursor=cursor)
        for c in resp.get("channels", []) or []:
            if c.get("name") == name and c.get("id"):
                return c["id"]
        cursor = (resp.get("response_metadata") or {}).get("next_cursor")
        if not cursor:
            break
    raise RuntimeError(f"Channel #{name} not found")


def permalink(slack_client, channel_id: str, ts: str) -> Optional[str]:
    resp = best_effort("permalink", slack_client.chat_getPermalink, channel=channel_id, message_ts=ts)
    if not resp:
        return None
    return resp.get("permalink") or None


def user_email(slack_client, user_id: str) -> Optional[str]:
    info = slack_client.users_info(user=user_id)
    profile = (info.get("user") or {}).get("profile") or {}
    return profile.get("email") or None


def fetch_thread_messages(
    slack_client,
    resolver,
    channel: str,
    thread_ts: str,
    skip_message: Optional[Callable[[Dict], bool]] = None,
) -> str:
    """
    All messages in a thread as "Author: text" blocks, with user ids swapped
    for display names and inline <@U..> mentions expanded.
    """
    resp = slack_client.conversations_replies(channel=channel, ts=thread_ts, limit=200)
    messages: List[Dict] = resp.get("messages", []) or []

    user_ids = [m["user"] for m in messages if m.get("user")]
    mention_ids = [uid for m in messages for uid in MENTION_RE.findall(m.get("text") or "")]
    # one fan-out up front; resolve_mentions below reads the warmed cache
    names = resolver.slack_names.resolve_many(user_ids + mention_ids)

    blocks = []
    for m in messages:
        if skip_message and skip_message(m):
            continue
        author = names.get(m["user"], m["user"]) if m.get("user") else "bot"
        text = resolver.resolve_mentions(m.get("text") or "") or "(no text)"
        blocks.append(f"{author}: {text}")

    return "\n\n".join(blocks)
