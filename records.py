"""
Generic CRUD over the Record Store tables.

Every table is described once by a ``Resource`` (model, writable fields,
ordering rule, counters, verbs) and served by one ``RecordStore``, so the
list/get/create/update/delete/like behaviour cannot drift between tables.
"""
import json
import logging
from datetime import datetime, time, timezone

from models import (
    DEFAULT_EMOJI, Comment, GuestbookEntry, Link, Note, Post, Setting,
    Track, Visit, db, utcnow,
)

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Payload is missing a required field or carries an unusable value."""


class Field:
    def __init__(self, name, default=None, required=False, kind="text"):
        self.name = name
        self.default = default
        self.required = required
        self.kind = kind  # text | int | bool | tags

    def coerce(self, value):
        if value is None:
            if self.required:
                raise ValidationError(f"'{self.name}' is required")
            return self.default
        if self.kind == "bool":
            return bool(value)
        if self.kind == "int":
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"'{self.name}' must be an integer")
        if self.kind == "tags":
            return json.dumps(normalize_tags(value), ensure_ascii=False)
        value = str(value)
        if self.required and not value.strip():
            raise ValidationError(f"'{self.name}' is required")
        return value


def normalize_tags(tags):
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    elif not isinstance(tags, (list, tuple)):
        tags = [tags]
    out = []
    for t in tags:
        t = str(t).strip()
        if t:
            out.append(t)
    return out


def _load_tags(raw):
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [str(t) for t in tags] if isinstance(tags, list) else []


class Resource:
    def __init__(self, name, model, fields, ordering, verbs,
                 filters=None, read_counter=None, like_counter=None):
        self.name = name
        self.model = model
        self.fields = fields
        self.filters = filters or {}
        self.read_counter = read_counter
        self.like_counter = like_counter
        self.verbs = frozenset(verbs)

        # always total: identity breaks ties in the direction of the last key
        if not any(col == "id" for col, _ in ordering):
            ordering = list(ordering) + [("id", ordering[-1][1])]
        self.ordering = tuple(ordering)

    def order_by(self):
        clauses = []
        for col, direction in self.ordering:
            column = getattr(self.model, col)
            clauses.append(column.desc() if direction == "desc" else column.asc())
        return clauses

    def serialize(self, row):
        if row is None:
            return None
        out = {}
        for column in self.model.__table__.columns:
            value = getattr(row, column.name)
            if isinstance(value, datetime):
                value = value.replace(microsecond=0).isoformat()
            out[column.name] = value
        for f in self.fields:
            if f.kind == "tags":
                out[f.name] = _load_tags(out.get(f.name))
        return out


NEWEST_FIRST = [("created_at", "desc")]

POSTS = Resource(
    "posts", Post,
    fields=[
        Field("title", required=True),
        Field("content", required=True),
        Field("category"),
        Field("tags", kind="tags"),
        Field("cover_image"),
        Field("is_published", default=True, kind="bool"),
        Field("is_pinned", default=False, kind="bool"),
    ],
    ordering=[("is_pinned", "desc"), ("created_at", "desc")],
    filters={"is_published": True},
    read_counter="views",
    like_counter="likes",
    verbs={"list", "get", "create", "update", "delete", "like"},
)

NOTES = Resource(
    "notes", Note,
    fields=[
        Field("title", required=True),
        Field("content", required=True),
        Field("tags", kind="tags"),
    ],
    ordering=NEWEST_FIRST,
    like_counter="likes",
    verbs={"list", "get", "create", "delete", "like"},
)

COMMENTS = Resource(
    "comments", Comment,
    fields=[
        Field("post_id", kind="int"),
        Field("author", required=True),
        Field("email", default=""),
        Field("content", required=True),
    ],
    ordering=NEWEST_FIRST,
    like_counter="likes",
    verbs={"list", "create", "like"},
)

GUESTBOOK = Resource(
    "guestbook", GuestbookEntry,
    fields=[
        Field("name", required=True),
        Field("email"),
        Field("emoji", default=DEFAULT_EMOJI),
        Field("message", required=True),
        Field("reply"),
    ],
    ordering=NEWEST_FIRST,
    verbs={"list", "get", "create", "update"},
)

LINKS = Resource(
    "links", Link,
    fields=[
        Field("name", required=True),
        Field("url", required=True),
        Field("description"),
        Field("logo"),
        Field("position", default=0, kind="int"),
    ],
    ordering=[("position", "asc")],
    verbs={"list", "get", "create", "delete"},
)

PLAYLIST = Resource(
    "playlist", Track,
    fields=[
        Field("title", required=True),
        Field("artist"),
        Field("url", required=True),
        Field("cover"),
        Field("position", default=0, kind="int"),
    ],
    ordering=[("position", "asc")],
    verbs={"list", "create", "delete"},
)

VISITS = Resource(
    "visits", Visit,
    fields=[
        Field("page", required=True),
        Field("ip", default="unknown"),
        Field("user_agent", default=""),
    ],
    ordering=NEWEST_FIRST,
    verbs={"create"},
)


class RecordStore:
    """CRUD verbs shared by every resource.

    ``count_views`` / ``count_likes`` switch the counter increments off
    without changing the endpoints' answers.
    """

    def __init__(self, session=None, count_views=True, count_likes=True):
        self.session = session if session is not None else db.session
        self.count_views = count_views
        self.count_likes = count_likes

    def _where(self, stmt, resource, filters):
        for col, value in {**resource.filters, **filters}.items():
            stmt = stmt.where(getattr(resource.model, col) == value)
        return stmt

    def list(self, resource, **filters):
        stmt = self._where(db.select(resource.model), resource, filters)
        rows = self.session.execute(stmt.order_by(*resource.order_by())).scalars().all()
        return [resource.serialize(r) for r in rows]

    def count(self, resource, **filters):
        stmt = db.select(db.func.count()).select_from(resource.model)
        return self.session.execute(self._where(stmt, resource, filters)).scalar_one()

    def get(self, resource, record_id):
        if resource.read_counter and self.count_views:
            self._increment(resource, record_id, resource.read_counter)
        row = self.session.get(resource.model, record_id)
        return resource.serialize(row)

    def create(self, resource, payload):
        values = {f.name: f.coerce(payload.get(f.name)) for f in resource.fields}
        row = resource.model(**values)
        self.session.add(row)
        self._commit()
        logger.debug("created %s #%s", resource.name, row.id)
        return row.id

    def update(self, resource, record_id, payload):
        # full overwrite: omitted fields go back to their defaults
        values = {f.name: f.coerce(payload.get(f.name)) for f in resource.fields}
        if hasattr(resource.model, "updated_at"):
            values["updated_at"] = utcnow()
        stmt = (
            db.update(resource.model)
            .where(resource.model.id == record_id)
            .values(**values)
        )
        self._write(stmt)

    def delete(self, resource, record_id):
        # no cascade: comments of a deleted post stay
        self._write(db.delete(resource.model).where(resource.model.id == record_id))

    def like(self, resource, record_id):
        if self.count_likes:
            self._increment(resource, record_id, resource.like_counter)

    def _increment(self, resource, record_id, counter):
        # single UPDATE so the storage engine applies the +1 atomically
        column = getattr(resource.model, counter)
        stmt = (
            db.update(resource.model)
            .where(resource.model.id == record_id)
            .values({counter: column + 1})
        )
        self._write(stmt)

    def _write(self, stmt):
        try:
            self.session.execute(stmt)
        except Exception:
            self.session.rollback()
            raise
        self._commit()

    def _commit(self):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # ---- settings: key/value, last write wins ----

    def get_setting(self, key):
        row = self.session.get(Setting, key)
        return row.value if row else None

    def set_setting(self, key, value):
        if value is None:
            raise ValidationError("'value' is required")
        self.session.merge(Setting(key=key, value=str(value)))
        self._commit()

    # ---- aggregates ----

    def stats(self):
        midnight = datetime.combine(datetime.now(timezone.utc).date(), time.min)
        today = self.session.execute(
            db.select(db.func.count()).select_from(Visit).where(Visit.created_at >= midnight)
        ).scalar_one()
        return {
            "totalVisits": self.count(VISITS),
            "todayVisits": today,
            "postsCount": self.count(POSTS),
            "notesCount": self.count(NOTES),
        }
