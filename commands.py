from dataclasses import dataclass
from typing import List

HELP_TEXT = (
    "available commands:\n"
    "• `{cmd} status` - check if rooster is running\n"
    "• `{cmd} check [days]` - check for issues (default: 1 day)\n"
    "  - add a number for more days, e.g. `{cmd} check 3`\n"
    "  - add `--new` to show only new (unassigned) issues\n"
    "  - add `--open` to show only waiting-on-you issues\n"
    "  - by default, shows both new and open issues in separate sections\n"
    "  - add `--mine` to show only issues assigned to you\n"
    "  - add `--channel` to post to channel\n"
    "  - add `--remind` to tag on-call"
)

STATUS_TEXT = "rooster is alive and watching for open threads!"


@dataclass(frozen=True)
class CheckOptions:
    days: int = 1
    show_new: bool = True
    show_open: bool = True
    to_channel: bool = False
    tag_oncall: bool = False
    mine: bool = False


def split_command(text: str) -> List[str]:
    return (text or "").strip().split()


def help_text(command: str = "/rooster") -> str:
    return HELP_TEXT.format(cmd=command)


def parse_check_args(args: List[str]) -> CheckOptions:
    """Flags after ``check``. The first all-digit token is the day count."""
    flags = set(args)
    tag_oncall = "--remind" in flags
    filter_new = "--new" in flags
    filter_open = "--open" in flags
    neither = not filter_new and not filter_open

    days_arg = next((a for a in args if a.isascii() and a.isdigit()), None)
    days = max(1, int(days_arg)) if days_arg else 1

    return CheckOptions(
        days=days,
        show_new=filter_new or neither,
        show_open=filter_open or neither,
        to_channel=tag_oncall or "--channel" in flags,
        tag_oncall=tag_oncall,
        mine="--mine" in flags,
    )
