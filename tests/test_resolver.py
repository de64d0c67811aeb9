"""
Name caches and batch identity resolution.

Run with: pytest tests/test_resolver.py -v
"""

import threading
from unittest.mock import MagicMock

from cache import NameCache
from pylon_read import Issue
from resolver import BatchResolver, IdentityResolver


class TestNameCache:
    def test_unbounded_by_default(self):
        cache = NameCache()
        for n in range(500):
            cache.set(str(n), n)
        assert len(cache) == 500
        assert cache.get("0") == 0

    def test_lru_eviction(self):
        cache = NameCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_ttl_expiry(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("cache.time.monotonic", lambda: clock[0])
        cache = NameCache(ttl_seconds=60)
        cache.set("a", "x")
        clock[0] += 30
        assert cache.get("a") == "x"
        clock[0] += 31
        assert cache.get("a") is None


class TestBatchResolver:
    def test_same_id_twice_is_one_call(self):
        fetch = MagicMock(return_value="Acme")
        r = BatchResolver("account", fetch)

        assert r.resolve_many(["a1", "a1"]) == {"a1": "Acme"}
        assert r.resolve_many(["a1"]) == {"a1": "Acme"}
        fetch.assert_called_once_with("a1")

    def test_distinct_ids_run_in_parallel(self):
        # both lookups must be in flight at once to get past the barrier
        barrier = threading.Barrier(2, timeout=5)

        def fetch(key):
            barrier.wait()
            return key.upper()

        r = BatchResolver("account", fetch)
        assert r.resolve_many(["a", "b"]) == {"a": "A", "b": "B"}

    def test_failures_are_omitted_and_not_cached(self):
        calls = []

        def fetch(key):
            calls.append(key)
            if key == "bad":
                raise RuntimeError("upstream down")
            if key == "empty":
                return None
            return "ok"

        r = BatchResolver("account", fetch)
        assert r.resolve_many(["good", "bad", "empty"]) == {"good": "ok"}
        assert "bad" not in r.cache
        r.resolve_many(["bad"])
        assert calls.count("bad") == 2
        assert calls.count("good") == 1

    def test_blank_ids_ignored(self):
        fetch = MagicMock()
        r = BatchResolver("account", fetch)
        assert r.resolve_many([None, ""]) == {}
        fetch.assert_not_called()

    def test_resolve_one(self):
        r = BatchResolver("account", lambda key: f"name-{key}")
        assert r.resolve_one("x") == "name-x"


def _resolver(slack=None, pylon=None):
    pylon = pylon or MagicMock()
    slack = slack or MagicMock()
    return IdentityResolver(pylon, slack), pylon, slack


class TestIdentityResolver:
    def test_assignee_chain(self):
        resolver, pylon, slack = _resolver()
        pylon.fetch_user_email.return_value = "a@x.com"
        slack.users_lookupByEmail.return_value = {"ok": True, "user": {"id": "C123"}}
        issue = Issue.from_dict({"id": "i", "state": "new", "assignee": {"id": "u1"}})

        assert resolver.assignee_slack_ids_for([issue]) == {"u1": "C123"}
        slack.users_lookupByEmail.assert_called_once_with(email="a@x.com")

    def test_assignee_chain_email_failure(self):
        resolver, pylon, slack = _resolver()
        pylon.fetch_user_email.side_effect = RuntimeError("pylon 500")
        issue = Issue.from_dict({"id": "i", "state": "new", "assignee": {"id": "u1"}})

        assert resolver.assignee_slack_ids_for([issue]) == {}
        slack.users_lookupByEmail.assert_not_called()

    def test_each_hop_has_its_own_cache(self):
        resolver, pylon, slack = _resolver()
        pylon.fetch_user_email.return_value = "a@x.com"
        slack.users_lookupByEmail.return_value = {"user": {"id": "C123"}}
        issue = Issue.from_dict({"id": "i", "state": "new", "assignee": {"id": "u1"}})

        resolver.assignee_slack_ids_for([issue])
        resolver.assignee_slack_ids_for([issue])

        assert pylon.fetch_user_email.call_count == 1
        assert slack.users_lookupByEmail.call_count == 1
        assert resolver.helpdesk_emails.cache is not resolver.slack_ids_by_email.cache

    def test_names_for(self):
        resolver, pylon, slack = _resolver()
        pylon.fetch_account_name.return_value = "Acme"
        pylon.fetch_user_email.return_value = "a@x.com"
        slack.conversations_info.return_value = {"channel": {"name": "ext-acme"}}
        slack.users_lookupByEmail.return_value = {"user": {"id": "C123"}}
        issue = Issue.from_dict({
            "id": "i",
            "state": "new",
            "account": {"id": "acc"},
            "assignee": {"id": "u1"},
            "slack": {"channel_id": "C1", "message_ts": "1.2"},
        })

        names = resolver.names_for([issue])

        assert names.account_names == {"acc": "Acme"}
        assert names.channel_names == {"C1": "ext-acme"}
        assert names.assignee_slack_ids == {"u1": "C123"}

    def test_slack_name_prefers_real_name(self):
        resolver, _, slack = _resolver()
        slack.users_info.return_value = {"user": {"real_name": "Ada Lovelace", "name": "ada"}}
        assert resolver.slack_names.resolve_one("U1") == "Ada Lovelace"

    def test_resolve_mentions_keeps_raw_id_on_failure(self):
        resolver, _, slack = _resolver()

        def users_info(user):
            if user == "UGOOD":
                return {"user": {"name": "ada"}}
            raise RuntimeError("user_not_found")

        slack.users_info.side_effect = users_info
        assert resolver.resolve_mentions("hi <@UGOOD> and <@UBAD>") == "hi ada and UBAD"

    def test_cache_factory_is_used(self):
        made = []

        def factory():
            c = NameCache(max_size=10)
            made.append(c)
            return c

        IdentityResolver(MagicMock(), MagicMock(), cache_factory=factory)
        assert len(made) == 5
