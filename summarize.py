import re
from typing import Dict

from logging_config import get_logger
from slack_read import best_effort, fetch_thread_messages

logger = get_logger(__name__)

SUMMARIZE_SYSTEM_PROMPT = """
You are a helpful assistant that summarizes Slack threads. Given a series of messages from a Slack thread, produce a concise summary that:

1. Starts with a brief overview of what the thread is about (1-2 sentences).
2. Highlights any **decisions** that were made (prefix each with "Decision:").
3. Highlights any **action items** that were identified, including who is responsible if mentioned (prefix each with "Action item:").

Format using Slack mrkdwn (use *bold* for emphasis, bullet points with •). Keep it concise but don't miss important details. If there are no decisions or action items, omit those sections.
""".strip()

WORKING = "hourglass_flowing_sand"
DONE = "white_check_mark"
FAILED = "x"

_ANY_MENTION = re.compile(r"<@[A-Z0-9]+>")


def is_summarize_command(msg: Dict) -> bool:
    text = msg.get("text") or ""
    if "<@" not in text or "summarize" not in text.lower():
        return False
    return _ANY_MENTION.sub("", text).strip().lower() == "summarize"


def generate_summary(oai, model: str, thread_content: str) -> str:
    resp = oai.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": SUMMARIZE_SYSTEM_PROMPT},
            {"role": "user", "content": f"Here is the Slack thread to summarize:\n\n{thread_content}"},
        ],
        temperature=0.3,
        max_tokens=1024,
    )
    return (resp.choices[0].message.content or "").strip() or "Could not generate summary."


def _swap_reaction(slack_client, channel: str, ts: str, to: str) -> None:
    best_effort("remove reaction", slack_client.reactions_remove, channel=channel, timestamp=ts, name=WORKING)
    best_effort("add reaction", slack_client.reactions_add, channel=channel, timestamp=ts, name=to)


def handle_summarize(slack_client, resolver, oai, model: str, channel: str, thread_ts: str, message_ts: str) -> None:
    logger.info("summarizing thread", extra={"channel": channel, "thread_ts": thread_ts})
    best_effort("add reaction", slack_client.reactions_add, channel=channel, timestamp=message_ts, name=WORKING)

    try:
        content = fetch_thread_messages(
            slack_client, resolver, channel, thread_ts, skip_message=is_summarize_command
        )
        if not content.strip():
            slack_client.chat_postMessage(
                channel=channel,
                thread_ts=thread_ts,
                text="There are no messages in this thread to summarize.",
            )
            _swap_reaction(slack_client, channel, message_ts, DONE)
            return

        summary = generate_summary(oai, model, content)
        logger.info("generated summary", extra={"chars_in": len(content), "chars_out": len(summary)})

        slack_client.chat_postMessage(
            channel=channel,
            thread_ts=thread_ts,
            text=f"*Thread Summary*\n\n{summary}",
            unfurl_links=False,
        )
        _swap_reaction(slack_client, channel, message_ts, DONE)
    except Exception:
        logger.exception("error generating summary", extra={"channel": channel, "thread_ts": thread_ts})
        _swap_reaction(slack_client, channel, message_ts, FAILED)
        best_effort(
            "summary apology",
            slack_client.chat_postMessage,
            channel=channel,
            thread_ts=thread_ts,
            text="Sorry, I encountered an error while summarizing this thread.",
            unfurl_links=False,
        )
