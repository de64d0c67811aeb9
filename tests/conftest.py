"""
Pytest configuration: put the repo root on sys.path so the flat modules
import the same way they do when app.py runs, and seed fake credentials.
"""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

os.environ.setdefault("LOG_LEVEL", "WARNING")

WORKSPACE = "https://acme.slack.com"


def _http_response(status: int = 200, body=None, text: str = ""):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = text
    r.json.return_value = body if body is not None else {}
    return r


@pytest.fixture
def http_response():
    return _http_response


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def slack():
    client = MagicMock()
    client.chat_postMessage.return_value = {"ok": True, "ts": "1700000100.000200", "channel": "CTRIAGE"}
    client.chat_getPermalink.return_value = {"permalink": f"{WORKSPACE}/archives/CTRIAGE/p1700000100000200"}
    return client


@pytest.fixture
def issue_rows():
    return [
        {
            "id": "iss_1",
            "number": 101,
            "title": "docs build failing",
            "state": "new",
            "first_response_time": None,
            "link": "https://app.usepylon.com/issues/iss_1",
            "account": {"id": "acc_1"},
            "assignee": {"id": "u1", "email": ""},
            "slack": {"channel_id": "C1", "message_ts": "1700000000.123456"},
        },
        {
            "id": "iss_2",
            "number": 102,
            "title": "question about sdk",
            "state": "new",
            "first_response_time": "2026-10-18T10:00:00Z",
            "requester": {"email": "dev@globex.io"},
        },
        {
            "id": "iss_3",
            "number": 103,
            "title": "broken pagination",
            "state": "waiting_on_you",
            "assignee": {"id": "u2", "email": ""},
        },
        {
            "id": "iss_4",
            "number": 104,
            "title": "closed one",
            "state": "closed",
        },
    ]
