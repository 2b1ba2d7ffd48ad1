"""
HTTP client for the blog API, plus the optimistic-fallback feeds used by the
comment section and the guestbook.

A failed create does not raise: the feed builds a local record, shows it at
the top of the list and returns ``Local(temp_id)``. Local records are never
retried or reconciled, and they are gone after a reload. This masks outages
for the current view only; it is not an offline queue.
"""
import itertools
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

import requests

logger = logging.getLogger(__name__)

API_BASE = os.getenv("BLOG_API_URL", "http://localhost:3001")
LOCAL_ID_PREFIX = "local-"


class ApiError(Exception):
    def __init__(self, status, endpoint):
        super().__init__(f"API Error: {status} on {endpoint}")
        self.status = status
        self.endpoint = endpoint


class Persisted(NamedTuple):
    id: int


class Local(NamedTuple):
    temp_id: str


def is_local(record):
    return str(record.get("id", "")).startswith(LOCAL_ID_PREFIX)


_local_seq = itertools.count(1)


def _local_id():
    # the sequence keeps ids distinct within one millisecond
    return f"{LOCAL_ID_PREFIX}{int(time.time() * 1000)}-{next(_local_seq)}"


def _now_iso():
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class BlogClient:
    def __init__(self, base_url=None, session=None, timeout=10):
        self.base_url = (base_url or API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def request(self, method, endpoint, payload=None):
        resp = self.session.request(
            method,
            f"{self.base_url}{endpoint}",
            json=payload,
            timeout=self.timeout,
        )
        if not resp.ok:
            raise ApiError(resp.status_code, endpoint)
        return resp.json()

    # ---- posts ----
    def list_posts(self):
        return self.request("GET", "/api/posts")

    def get_post(self, post_id):
        return self.request("GET", f"/api/posts/{post_id}")

    def create_post(self, **fields):
        return self.request("POST", "/api/posts", fields)["id"]

    def update_post(self, post_id, **fields):
        return self.request("PUT", f"/api/posts/{post_id}", fields)

    def delete_post(self, post_id):
        return self.request("DELETE", f"/api/posts/{post_id}")

    def like_post(self, post_id):
        return self.request("POST", f"/api/posts/{post_id}/like")

    # ---- notes ----
    def list_notes(self):
        return self.request("GET", "/api/notes")

    def create_note(self, title, content, tags=None):
        payload = {"title": title, "content": content, "tags": tags or []}
        return self.request("POST", "/api/notes", payload)["id"]

    def like_note(self, note_id):
        return self.request("POST", f"/api/notes/{note_id}/like")

    # ---- comments ----
    def list_comments(self, post_id):
        return self.request("GET", f"/api/comments/{post_id}")

    def create_comment(self, post_id, author, content):
        payload = {"postId": post_id, "author": author, "content": content}
        return self.request("POST", "/api/comments", payload)["id"]

    def like_comment(self, comment_id):
        return self.request("POST", f"/api/comments/{comment_id}/like")

    # ---- guestbook ----
    def list_guestbook(self):
        return self.request("GET", "/api/guestbook")

    def create_guestbook_entry(self, author, content, emoji=None):
        payload = {"author": author, "content": content}
        if emoji:
            payload["emoji"] = emoji
        return self.request("POST", "/api/guestbook", payload)["id"]

    # ---- stats & visits ----
    def stats(self):
        return self.request("GET", "/api/stats")

    def record_visit(self, page):
        return self.request("POST", "/api/visits", {"page": page})

    # ---- links ----
    def list_links(self):
        return self.request("GET", "/api/links")

    def create_link(self, **fields):
        return self.request("POST", "/api/links", fields)["id"]

    def delete_link(self, link_id):
        return self.request("DELETE", f"/api/links/{link_id}")

    # ---- settings ----
    def get_setting(self, key):
        return self.request("GET", f"/api/settings/{key}")["value"]

    def set_setting(self, key, value):
        return self.request("PUT", f"/api/settings/{key}", {"value": value})


# ===== Feeds with optimistic fallback =====
class _Feed:
    def __init__(self, client, author_slot=None):
        self.client = client
        self.author_slot = author_slot
        self.items = []

    def _fetch(self):
        raise NotImplementedError

    def _demo(self):
        return []

    def load(self):
        try:
            self.items = self._fetch()
        except (requests.RequestException, ApiError) as e:
            logger.warning("%s load failed, showing demo data: %s", type(self).__name__, e)
            self.items = self._demo()
        return self.items

    def _submit(self, send, local_record):
        try:
            record_id = send()
        except (requests.RequestException, ApiError) as e:
            logger.warning("%s submit failed, keeping a local copy: %s", type(self).__name__, e)
            self.items = [local_record] + self.items
            return Local(local_record["id"])
        self.load()
        return Persisted(record_id)

    def _remember(self, author):
        if self.author_slot is not None:
            self.author_slot.set(author)

    def unsynced(self):
        return [r for r in self.items if is_local(r)]


class CommentFeed(_Feed):
    def __init__(self, client, post_id, author_slot=None):
        super().__init__(client, author_slot)
        self.post_id = post_id

    def _fetch(self):
        return self.client.list_comments(self.post_id)

    def _demo(self):
        return [{
            "id": "1",
            "post_id": self.post_id,
            "author": "访客用户",
            "content": "这篇文章写得很好，学到了很多！",
            "created_at": _now_iso(),
            "likes": 5,
        }]

    def submit(self, author, content):
        if not author.strip() or not content.strip():
            return None
        self._remember(author)
        local = {
            "id": _local_id(),
            "post_id": self.post_id,
            "author": author,
            "content": content,
            "created_at": _now_iso(),
            "likes": 0,
        }
        return self._submit(
            lambda: self.client.create_comment(self.post_id, author, content), local
        )

    def like(self, comment_id):
        # counter moves first; a failed request is not rolled back
        for c in self.items:
            if c["id"] == comment_id:
                c["likes"] = c.get("likes", 0) + 1
        if str(comment_id).startswith(LOCAL_ID_PREFIX):
            return
        try:
            self.client.like_comment(comment_id)
        except (requests.RequestException, ApiError) as e:
            logger.warning("like for comment %s not sent: %s", comment_id, e)


class GuestbookFeed(_Feed):
    def _fetch(self):
        return self.client.list_guestbook()

    def _demo(self):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        return [
            {
                "id": "1",
                "name": "小明",
                "message": "博客设计得很漂亮，继续加油！",
                "created_at": (now - timedelta(days=1)).isoformat(),
                "emoji": "🎉",
            },
            {
                "id": "2",
                "name": "技术爱好者",
                "message": "学到了很多边缘计算的知识，感谢分享！",
                "created_at": (now - timedelta(days=2)).isoformat(),
                "emoji": "💡",
            },
        ]

    def submit(self, author, content, emoji=None):
        if not author.strip() or not content.strip():
            return None
        self._remember(author)
        local = {
            "id": _local_id(),
            "name": author,
            "message": content,
            "created_at": _now_iso(),
            "emoji": emoji or "😊",
        }
        return self._submit(
            lambda: self.client.create_guestbook_entry(author, content, emoji), local
        )
