"""BlogClient against the Flask app, and the optimistic-fallback feeds."""

from unittest.mock import MagicMock

import pytest
import requests

from client import (
    ApiError, BlogClient, CommentFeed, GuestbookFeed, Local, Persisted, is_local,
)
from preferences import RememberedName

BASE = "http://blog.test"


class FlaskSession:
    """requests.Session stand-in that dispatches to a Flask test client."""

    def __init__(self, app):
        self.test_client = app.test_client()

    def request(self, method, url, json=None, timeout=None):
        resp = self.test_client.open(url[len(BASE):], method=method, json=json)
        fake = MagicMock()
        fake.status_code = resp.status_code
        fake.ok = resp.status_code < 400
        fake.json.return_value = resp.get_json()
        return fake


def _failing_session(exc=None, status=None):
    session = MagicMock()
    if exc is not None:
        session.request.side_effect = exc
    else:
        resp = MagicMock()
        resp.ok = False
        resp.status_code = status
        session.request.return_value = resp
    return session


@pytest.fixture
def api(app):
    return BlogClient(BASE, session=FlaskSession(app))


def test_client_roundtrip(api):
    post_id = api.create_post(title="T", content="C", tags=["x"])
    assert api.get_post(post_id)["tags"] == ["x"]
    api.like_post(post_id)
    assert [p["likes"] for p in api.list_posts()] == [1]

    api.set_setting("motto", "stay curious")
    assert api.get_setting("motto") == "stay curious"

    api.record_visit("/")
    assert api.stats()["totalVisits"] == 1


def test_client_raises_api_error_on_non_2xx(api):
    with pytest.raises(ApiError) as excinfo:
        api.create_post(title="no content")
    assert excinfo.value.status == 400


def test_comment_submit_persists_and_reloads(api, storage):
    slot = RememberedName(storage, "comment_author")
    feed = CommentFeed(api, post_id=1, author_slot=slot)

    result = feed.submit("Alice", "Nice post")

    assert isinstance(result, Persisted)
    assert [c["id"] for c in feed.items] == [result.id]
    assert feed.unsynced() == []
    assert slot.value == "Alice"


@pytest.mark.parametrize(
    "session",
    [
        _failing_session(exc=requests.ConnectionError("offline")),
        _failing_session(status=503),
    ],
)
def test_comment_submit_falls_back_to_local_record(session):
    feed = CommentFeed(BlogClient(BASE, session=session), post_id=1)
    feed.items = [{"id": 10, "author": "x", "content": "older", "likes": 2}]

    result = feed.submit("Alice", "Written while offline")

    assert isinstance(result, Local)
    assert result.temp_id.startswith("local-")
    assert feed.items[0]["id"] == result.temp_id
    assert feed.items[0]["content"] == "Written while offline"
    assert feed.items[0]["likes"] == 0
    assert feed.items[1]["id"] == 10
    assert [r["id"] for r in feed.unsynced()] == [result.temp_id]
    assert not is_local(feed.items[1])
    # attempted exactly once, no retry
    assert session.request.call_count == 1


def test_blank_submit_is_ignored():
    session = MagicMock()
    feed = CommentFeed(BlogClient(BASE, session=session), post_id=1)

    assert feed.submit("Alice", "   ") is None
    session.request.assert_not_called()


def test_load_failure_shows_demo_data():
    session = _failing_session(exc=requests.Timeout("slow"))

    comments = CommentFeed(BlogClient(BASE, session=session), post_id=3).load()
    entries = GuestbookFeed(BlogClient(BASE, session=session)).load()

    assert comments[0]["likes"] == 5
    assert [e["emoji"] for e in entries] == ["🎉", "💡"]


def test_comment_like_is_optimistic(api):
    feed = CommentFeed(api, post_id=4)
    feed.submit("Bob", "first")
    comment_id = feed.items[0]["id"]

    feed.like(comment_id)
    assert feed.items[0]["likes"] == 1
    assert feed.load()[0]["likes"] == 1

    offline = CommentFeed(BlogClient(BASE, session=_failing_session(status=500)), post_id=4)
    offline.items = [{"id": 1, "likes": 0}]
    offline.like(1)
    assert offline.items[0]["likes"] == 1


def test_guestbook_feed(api):
    feed = GuestbookFeed(api)

    result = feed.submit("Alice", "Hi")

    assert isinstance(result, Persisted)
    assert feed.items[0]["emoji"] == "😊"

    offline = GuestbookFeed(BlogClient(BASE, session=_failing_session(status=502)))
    local = offline.submit("Carol", "Hello", emoji="🚀")
    assert isinstance(local, Local)
    assert offline.items[0]["emoji"] == "🚀"


def test_offline_submits_in_one_millisecond_get_distinct_ids(monkeypatch):
    monkeypatch.setattr("client.time.time", lambda: 1700000000.0)
    feed = CommentFeed(BlogClient(BASE, session=_failing_session(status=503)), post_id=1)

    first = feed.submit("Alice", "one")
    second = feed.submit("Alice", "two")

    assert first.temp_id != second.temp_id
    feed.like(second.temp_id)
    assert {c["content"]: c["likes"] for c in feed.items} == {"one": 0, "two": 1}
