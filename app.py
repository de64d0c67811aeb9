import uvicorn
from apscheduler.schedulers.background import BackgroundScheduler
from openai import OpenAI
from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from cache import NameCache
from commands import STATUS_TEXT, help_text, parse_check_args, split_command
from config import Config, load_config
from digest import NOTHING_TO_REPORT, DigestService, timeframe
from logging_config import get_logger
from oncall import build_oncall_resolver
from pylon_read import PylonClient
from resolver import IdentityResolver
from slack_read import user_email
from summarize import handle_summarize, is_summarize_command
from triage import TriageDispatcher, create_webhook_app

log = get_logger("rooster")

# days of history the morning unresponded check looks at (yesterday + today)
MORNING_WINDOW_DAYS = 2


class Rooster:
    """Everything a handler or job needs, built once at startup."""

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.app = App(token=cfg.slack_bot_token)

        auth = self.app.client.auth_test()
        self.bot_user_id = auth["user_id"]
        self.workspace_url = cfg.workspace_url or (auth.get("url") or "").rstrip("/")

        self.pylon = PylonClient(cfg.pylon_api_token, tz=cfg.timezone)
        self.resolver = IdentityResolver(
            self.pylon,
            self.app.client,
            cache_factory=lambda: NameCache(cfg.cache_max_size, cfg.cache_ttl_seconds),
        )
        self.oncall = build_oncall_resolver(cfg, self.app.client)
        self.digests = DigestService(
            self.pylon,
            self.resolver,
            self.oncall,
            self.app.client,
            cfg.alerts_channel,
            self.workspace_url,
        )
        self.triage = TriageDispatcher(
            self.app.client,
            self.pylon,
            self.oncall,
            cfg.devin_user_id,
            cfg.triage_channel,
            self.workspace_url,
        )
        self.oai = OpenAI(api_key=cfg.openai_api_key)

        register_handlers(self)


# ---- Slack handlers ----

def run_check(rooster: Rooster, args, user_id: str, respond) -> None:
    opts = parse_check_args(args)
    respond(f"checking issues from {timeframe(opts.days)}...")

    assignee_email = None
    if opts.mine:
        assignee_email = user_email(rooster.app.client, user_id)
        if not assignee_email:
            respond("❌ couldn't find an email on your slack profile, so `--mine` can't be used.")
            return

    options = dict(
        show_new=opts.show_new,
        show_open=opts.show_open,
        days=opts.days,
        assignee_email=assignee_email,
    )
    if opts.to_channel:
        if not rooster.digests.send_check(tag_oncall=opts.tag_oncall, **options):
            respond(NOTHING_TO_REPORT)
        return

    message = rooster.digests.check_message(**options)
    respond(message or NOTHING_TO_REPORT)


def register_handlers(rooster: Rooster) -> None:
    app = rooster.app
    cmd = rooster.cfg.command

    @app.command(cmd)
    def handle_rooster(ack, respond, command):
        ack()
        args = split_command(command.get("text"))
        sub = args[0].lower() if args else ""

        if sub == "status":
            respond(STATUS_TEXT)
        elif sub == "check":
            try:
                run_check(rooster, args[1:], command.get("user_id"), respond)
            except Exception:
                log.exception("error during manual check", extra={"user": command.get("user_id")})
                respond("❌ error running the check. see logs for details.")
        else:
            respond(help_text(cmd))

    @app.event("app_mention")
    def handle_app_mention(event, say):
        if not is_summarize_command(event):
            return

        thread_ts = event.get("thread_ts")
        if not thread_ts:
            say(text="mention me with `summarize` inside a thread and I'll summarize it.", thread_ts=event.get("ts"))
            return

        handle_summarize(
            app.client,
            rooster.resolver,
            rooster.oai,
            rooster.cfg.openai_model,
            event["channel"],
            thread_ts,
            event["ts"],
        )


# ---- scheduled jobs ----

def unresponded_job(rooster: Rooster) -> None:
    try:
        rooster.digests.send_unresponded(tag_oncall=True, days=MORNING_WINDOW_DAYS)
    except Exception:
        log.exception("error sending unresponded threads reminder")


def reminder_job(rooster: Rooster) -> None:
    try:
        rooster.digests.send_reminder()
    except Exception:
        log.exception("error sending open thread reminder")


def run_scheduled_jobs(rooster: Rooster) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=rooster.cfg.timezone)

    scheduler.add_job(
        unresponded_job,
        trigger="cron",
        args=[rooster],
        day_of_week="mon-fri",
        hour=9,
        minute=0,
        id="unresponded_threads",
        replace_existing=True,
    )

    scheduler.add_job(
        reminder_job,
        trigger="cron",
        args=[rooster],
        day_of_week="mon-fri",
        hour=17,
        minute=0,
        id="open_thread_reminder",
        replace_existing=True,
    )

    scheduler.start()
    return scheduler


def main() -> None:
    cfg = load_config()
    rooster = Rooster(cfg)

    run_scheduled_jobs(rooster)
    log.info("scheduled: unresponded threads at 9 AM and open thread reminder at 5 PM on weekdays")

    SocketModeHandler(rooster.app, cfg.slack_app_token).connect()
    log.info("rooster is running!", extra={"command": cfg.command, "port": cfg.webhook_port})

    webhook = create_webhook_app(rooster.triage, cfg.pylon_webhook_secret)
    uvicorn.run(webhook, host="0.0.0.0", port=cfg.webhook_port)


# --- Start the app ---
if __name__ == "__main__":
    main()
