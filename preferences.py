"""
Client Preference Store.

Device-local UI state (theme, AI provider config, hidden projects, ...) kept
in a key/value storage and never synced with the server. Each store is
rehydrated once when it is constructed and written through to storage on
every mutation.
"""
import copy
import json
import logging
import os
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

BLOB_VERSION = 0

THEMES = ("light", "dark")
BACKGROUNDS = ("space", "aurora", "cyberpunk", "warm", "sunset", "minimal")

DEFAULT_AI_CONFIG = {
    "provider": "qwen",
    "model": "qwen-plus",
    "apiKey": "",
    "baseUrl": "https://dashscope.aliyuncs.com/compatible-mode/v1",
}


# ===== Storage backends =====
class MemoryStorage:
    def __init__(self, items=None):
        self._items = dict(items or {})

    def get_item(self, key):
        return self._items.get(key)

    def set_item(self, key, value):
        self._items[key] = str(value)

    def remove_item(self, key):
        self._items.pop(key, None)


class FileStorage:
    """One file per key under ``root``; the desktop stand-in for localStorage."""

    def __init__(self, root=None):
        self.root = root or os.getenv(
            "BLOG_PREFS_DIR", os.path.join(os.path.expanduser("~"), ".blog-prefs")
        )
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key):
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return os.path.join(self.root, f"{safe}.json")

    def get_item(self, key):
        try:
            with open(self._path(key), encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set_item(self, key, value):
        path = self._path(key)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(str(value))
        os.replace(tmp, path)

    def remove_item(self, key):
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


# ===== Persisted stores =====
class PersistedStore:
    """Dict-shaped state under one storage key, as ``{"state": ..., "version": 0}``.

    Every key uses this envelope, including ``blog_todos``, ``blog_visit_stats``
    and ``project_order``, which the browser build kept as bare JSON.
    """

    key = None
    defaults = {}

    def __init__(self, storage):
        self.storage = storage
        self._state = copy.deepcopy(self.defaults)
        self.rehydrate()

    def rehydrate(self):
        raw = self.storage.get_item(self.key)
        if raw is None:
            return
        try:
            blob = json.loads(raw)
            state = blob["state"]
            if not isinstance(state, dict):
                raise TypeError("state is not an object")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding persisted %r blob: %s", self.key, e)
            return
        # a bad field falls back alone, the rest of the blob survives
        for name in self.defaults:
            if name not in state:
                continue
            try:
                self._state[name] = self._validate(name, state[name])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding persisted %r field %r: %s", self.key, name, e)

    def _validate(self, name, value):
        """Return ``value`` if usable for ``name``; raise ValueError/TypeError otherwise."""
        if not isinstance(value, type(self.defaults[name])):
            raise TypeError(f"{name} has type {type(value).__name__}")
        return value

    def get(self, name):
        return copy.deepcopy(self._state[name])

    def snapshot(self):
        return copy.deepcopy(self._state)

    def _set(self, **changes):
        # raises before anything is written, so storage never holds a value rehydrate rejects
        changes = {name: self._validate(name, value) for name, value in changes.items()}
        self._state.update(changes)
        self.storage.set_item(
            self.key,
            json.dumps({"state": self._state, "version": BLOB_VERSION}, ensure_ascii=False),
        )


class ThemeStore(PersistedStore):
    key = "theme-storage"
    defaults = {"theme": "dark", "background": "space"}

    def _validate(self, name, value):
        allowed = THEMES if name == "theme" else BACKGROUNDS
        if value not in allowed:
            raise ValueError(f"unknown {name} {value!r}")
        return value

    @property
    def theme(self):
        return self._state["theme"]

    @property
    def background(self):
        return self._state["background"]

    def toggle_theme(self):
        self._set(theme="light" if self.theme == "dark" else "dark")

    def set_background(self, background):
        self._set(background=background)


class SettingsStore(PersistedStore):
    key = "settings-storage"
    defaults = {
        "aiConfig": DEFAULT_AI_CONFIG,
        "contactEmail": "",
        "hiddenProjects": [],
    }

    def _validate(self, name, value):
        value = super()._validate(name, value)
        if name == "aiConfig":
            config = {k: v for k, v in value.items() if k in DEFAULT_AI_CONFIG}
            for k, v in config.items():
                if not isinstance(v, str):
                    raise TypeError(f"aiConfig.{k} has type {type(v).__name__}")
            return {**DEFAULT_AI_CONFIG, **config}
        if name == "hiddenProjects":
            return [str(p) for p in value]
        return value

    @property
    def ai_config(self):
        return self.get("aiConfig")

    @property
    def contact_email(self):
        return self._state["contactEmail"]

    @property
    def hidden_projects(self):
        return list(self._state["hiddenProjects"])

    def set_ai_config(self, **changes):
        unknown = set(changes) - set(DEFAULT_AI_CONFIG)
        if unknown:
            raise ValueError(f"unknown AI config fields: {sorted(unknown)}")
        self._set(aiConfig={**self._state["aiConfig"], **changes})

    def set_contact_email(self, email):
        self._set(contactEmail=email)

    def hide_project(self, name):
        if name not in self._state["hiddenProjects"]:
            self._set(hiddenProjects=self._state["hiddenProjects"] + [name])

    def show_project(self, name):
        # removes every occurrence, so duplicates left by old blobs go too
        self._set(hiddenProjects=[p for p in self._state["hiddenProjects"] if p != name])

    def is_hidden(self, name):
        return name in self._state["hiddenProjects"]

    def visible(self, names):
        return [n for n in names if not self.is_hidden(n)]


class TodoStore(PersistedStore):
    key = "blog_todos"
    defaults = {
        "items": [
            {"id": "1", "text": "完成博客功能开发", "completed": False},
            {"id": "2", "text": "写一篇技术文章", "completed": False},
        ]
    }

    def _validate(self, name, value):
        value = super()._validate(name, value)
        return [
            {"id": str(t["id"]), "text": str(t["text"]), "completed": bool(t.get("completed"))}
            for t in value
        ]

    @property
    def items(self):
        return self.get("items")

    def add(self, text):
        text = text.strip()
        if not text:
            return None
        taken = {t["id"] for t in self._state["items"]}
        stamp = int(time.time() * 1000)
        while str(stamp) in taken:
            stamp += 1
        item = {"id": str(stamp), "text": text, "completed": False}
        self._set(items=self._state["items"] + [item])
        return item["id"]

    def toggle(self, todo_id):
        self._set(items=[
            {**t, "completed": not t["completed"]} if t["id"] == todo_id else t
            for t in self._state["items"]
        ])

    def delete(self, todo_id):
        self._set(items=[t for t in self._state["items"] if t["id"] != todo_id])

    def progress(self):
        items = self._state["items"]
        if not items:
            return 0.0
        return sum(1 for t in items if t["completed"]) / len(items) * 100


class VisitCounter(PersistedStore):
    """Device-local visit counters; ``todayViews`` restarts on a new day."""

    key = "blog_visit_stats"
    defaults = {"totalViews": 0, "todayViews": 0, "lastVisitDate": "", "startDate": ""}

    def record_visit(self, now=None):
        now = now or datetime.now(timezone.utc)
        today = now.date().isoformat()
        s = self._state
        today_views = s["todayViews"] + 1 if s["lastVisitDate"] == today else 1
        self._set(
            totalViews=s["totalViews"] + 1,
            todayViews=today_views,
            lastVisitDate=today,
            startDate=s["startDate"] or now.isoformat(),
        )
        return self.snapshot()

    def running_days(self, now=None):
        """Days since the first visit, counting the first day as day 1."""
        if not self._state["startDate"]:
            return 0
        now = now or datetime.now(timezone.utc)
        start = datetime.fromisoformat(self._state["startDate"])
        return max(0, (now - start).days) + 1


class ProjectOrder(PersistedStore):
    key = "project_order"
    defaults = {"order": []}

    @property
    def order(self):
        return self.get("order")

    def set_order(self, ids):
        self._set(order=[str(i) for i in ids])

    def apply(self, names):
        """Sort ``names`` by the saved order; unknown names keep their place after it."""
        rank = {n: i for i, n in enumerate(self._state["order"])}
        return sorted(names, key=lambda n: rank.get(n, len(rank)))


class RememberedName:
    """Plain string slot, e.g. the last author name typed into a form."""

    def __init__(self, storage, key):
        self.storage = storage
        self.key = key
        self.value = storage.get_item(key) or ""

    def set(self, value):
        self.value = value
        self.storage.set_item(self.key, value)


class Preferences:
    """Every client-local store over one storage, rehydrated once at startup."""

    def __init__(self, storage=None):
        self.storage = storage if storage is not None else FileStorage()
        self.theme = ThemeStore(self.storage)
        self.settings = SettingsStore(self.storage)
        self.todos = TodoStore(self.storage)
        self.visits = VisitCounter(self.storage)
        self.project_order = ProjectOrder(self.storage)
        self.comment_author = RememberedName(self.storage, "comment_author")
        self.guestbook_author = RememberedName(self.storage, "guestbook_author")
