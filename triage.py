"""
Pylon webhook -> Devin triage.

The webhook is acknowledged as soon as its signature checks out; everything
after that runs as a background task and only ever logs its failures.
"""

import hashlib
import hmac
import json
import re
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from errors import AuthFailure
from logging_config import get_logger
from oncall import mention_line
from slack_read import best_effort, permalink, thread_url

logger = get_logger(__name__)

SIGNATURE_HEADER = "pylon-webhook-signature"
TIMESTAMP_HEADER = "pylon-webhook-timestamp"

PLACEHOLDER_RE = re.compile(r"\{\{.*?\}\}", re.DOTALL)

TRIAGE_PROMPT = """Please triage this customer support issue.

1. Determine which on-call team should handle this and tag them in your response (exact Slack handles provided below).
2. Based on the issue, decide on next steps:
   a. If this can be resolved with a support response, draft a message for the on-call to send to the customer.
   b. If this requires a code change, identify the relevant repo and draft a PR to fix the issue."""

ROUTING_INSTRUCTIONS = """Routing and response instructions:
• Reply in this thread, not in the customer's channel.
• Tag exactly one on-call handle from the list above.
• Keep the customer draft short and link any docs you reference.
• If you open a PR, link it here with a one-line summary of the fix."""

# fields whose absence triggers a hydration fetch from Pylon
HYDRATION_FIELDS = ("slack", "title", "link", "requester")


def sign(secret: str, timestamp: str, body: bytes) -> str:
    content = timestamp.encode() + b"." + body
    return hmac.new(secret.encode(), content, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str], timestamp: Optional[str]) -> None:
    """HMAC-SHA256 over ``timestamp + "." + body``. Raises AuthFailure."""
    if not signature or not timestamp or not body:
        raise AuthFailure("missing signature headers")
    expected = sign(secret, timestamp, body)
    if not hmac.compare_digest(signature.strip().encode(), expected.encode()):
        raise AuthFailure("invalid signature")


def extract_issue(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Locate the issue object in a webhook payload.

    Precedence: ``data`` if it is an object, then ``issue`` if it is an object,
    otherwise the payload itself.
    """
    for key in ("data", "issue"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return payload


def has_placeholder(value: str) -> bool:
    return bool(PLACEHOLDER_RE.search(value))


def strip_placeholders(obj: Any) -> Any:
    """Drop string values still carrying unrendered {{...}} template syntax."""
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(v, str) and has_placeholder(v):
                logger.info("dropping unrendered template field", extra={"field": k})
                continue
            out[k] = strip_placeholders(v)
        return out
    if isinstance(obj, list):
        return [strip_placeholders(v) for v in obj if not (isinstance(v, str) and has_placeholder(v))]
    return obj


def merge_under(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """``override`` wins on conflict; nested objects merge key by key."""
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_under(out[k], v)
        elif v is not None:
            out[k] = v
    return out


def needs_hydration(issue: Dict[str, Any]) -> bool:
    if any(not issue.get(f) for f in HYDRATION_FIELDS):
        return True
    account = issue.get("account")
    return not (isinstance(account, dict) and account.get("name"))


def origin_thread(issue: Dict[str, Any]):
    slack = issue.get("slack") if isinstance(issue.get("slack"), dict) else {}
    channel_id = slack.get("channel_id")
    ts = slack.get("thread_ts") or slack.get("message_ts")
    if channel_id and ts:
        return channel_id, ts
    return None


def build_triage_context(issue: Dict[str, Any], workspace_url: str) -> str:
    parts = []
    if issue.get("title"):
        parts.append(f"Title: {issue['title']}")
    if issue.get("body_html"):
        parts.append(f"Issue body:\n{issue['body_html']}")

    account = issue.get("account")
    if isinstance(account, dict) and account.get("name"):
        parts.append(f"Account: {account['name']}")

    requester = issue.get("requester")
    if isinstance(requester, dict) and requester.get("email"):
        parts.append(f"Requester: {requester['email']}")

    if issue.get("state"):
        parts.append(f"State: {issue['state']}")
    if issue.get("link"):
        parts.append(f"Pylon link: {issue['link']}")

    thread = origin_thread(issue)
    if thread:
        parts.append(f"Slack thread: {thread_url(workspace_url, *thread)}")

    attachments = issue.get("attachment_urls")
    if isinstance(attachments, list) and attachments:
        parts.append("Attachments:\n" + "\n".join(str(a) for a in attachments))

    return "\n\nIssue context:\n" + "\n".join(parts) if parts else ""


class TriageDispatcher:
    def __init__(
        self,
        slack_client,
        pylon,
        oncall,
        agent_user_id: str,
        triage_channel: str,
        workspace_url: str,
        post_instructions: bool = True,
    ):
        self.client = slack_client
        self.pylon = pylon
        self.oncall = oncall
        self.agent_user_id = agent_user_id
        self.triage_channel = triage_channel
        self.workspace_url = workspace_url
        self.post_instructions = post_instructions

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return strip_placeholders(extract_issue(payload))

    def hydrate(self, issue: Dict[str, Any]) -> Dict[str, Any]:
        issue_id = issue.get("id")
        if not issue_id or not needs_hydration(issue):
            return issue
        fetched = self.pylon.fetch_issue(str(issue_id))
        if not fetched:
            return issue
        logger.info("hydrated webhook issue from pylon", extra={"issue_id": issue_id})
        return merge_under(fetched, issue)

    def compose(self, issue: Dict[str, Any]) -> str:
        handles = mention_line(self.oncall.current_responders()).strip() or "(none found)"
        return (
            f"<@{self.agent_user_id}> {TRIAGE_PROMPT}\n\n"
            f"On-call handles to use: {handles}"
            f"{build_triage_context(issue, self.workspace_url)}"
        )

    def dispatch(self, payload: Dict[str, Any]) -> None:
        try:
            self._dispatch(payload)
        except Exception:
            logger.exception("error processing webhook")

    def _dispatch(self, payload: Dict[str, Any]) -> None:
        issue = self.hydrate(self.normalize(payload))
        text = self.compose(issue)

        resp = self.client.chat_postMessage(channel=self.triage_channel, text=text, unfurl_links=False)
        triage_ts = resp.get("ts")
        triage_channel_id = resp.get("channel") or self.triage_channel
        logger.info("posted to triage channel", extra={"issue_id": issue.get("id"), "ts": triage_ts})

        if self.post_instructions and triage_ts:
            best_effort(
                "routing instructions",
                self.client.chat_postMessage,
                channel=triage_channel_id,
                thread_ts=triage_ts,
                text=ROUTING_INSTRUCTIONS,
                unfurl_links=False,
            )

        thread = origin_thread(issue)
        if not thread:
            return

        link = None
        if triage_ts:
            link = permalink(self.client, triage_channel_id, triage_ts) or thread_url(
                self.workspace_url, triage_channel_id, triage_ts
            )
        where = f"<#{triage_channel_id}>"
        best_effort(
            "origin thread cross-link",
            self.client.chat_postMessage,
            channel=thread[0],
            thread_ts=thread[1],
            text=f"triaging this thread in {where}: {link}" if link else f"triaging this thread in {where}",
            unfurl_links=False,
        )


def create_webhook_app(dispatcher: TriageDispatcher, secret: str) -> FastAPI:
    api = FastAPI(title="rooster webhooks")

    @api.get("/healthz")
    def healthz():
        return {"ok": True}

    @api.post("/pylon/webhook")
    async def pylon_webhook(request: Request, background_tasks: BackgroundTasks):
        body = await request.body()
        try:
            verify_signature(
                secret,
                body,
                request.headers.get(SIGNATURE_HEADER),
                request.headers.get(TIMESTAMP_HEADER),
            )
        except AuthFailure as e:
            logger.warning("webhook rejected", extra={"reason": e.reason})
            return JSONResponse(status_code=401, content={"error": e.reason})

        try:
            payload = json.loads(body)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "invalid json"})
        if not isinstance(payload, dict):
            return JSONResponse(status_code=400, content={"error": "expected a json object"})

        logger.debug("webhook payload", extra={"payload": payload})
        background_tasks.add_task(dispatcher.dispatch, payload)
        return {"ok": True}

    return api
