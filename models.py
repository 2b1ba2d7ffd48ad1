from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

DEFAULT_EMOJI = "😊"


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Post(db.Model):
    __tablename__ = "posts"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(80))
    tags = db.Column(db.Text)  # JSON list
    cover_image = db.Column(db.String(400))
    views = db.Column(db.Integer, nullable=False, default=0)
    likes = db.Column(db.Integer, nullable=False, default=0)
    is_published = db.Column(db.Boolean, nullable=False, default=True)
    is_pinned = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)


class Note(db.Model):
    __tablename__ = "notes"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    tags = db.Column(db.Text)  # JSON list
    likes = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)


class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    # advisory only: no relationship, deleting a post leaves its comments
    post_id = db.Column(db.Integer, db.ForeignKey("posts.id"))
    author = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(200))
    content = db.Column(db.Text, nullable=False)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    likes = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)


class GuestbookEntry(db.Model):
    __tablename__ = "guestbook"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(200))
    emoji = db.Column(db.String(16), nullable=False, default=DEFAULT_EMOJI)
    message = db.Column(db.Text, nullable=False)
    reply = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)


class Setting(db.Model):
    __tablename__ = "settings"

    key = db.Column(db.String(120), primary_key=True)
    value = db.Column(db.Text, nullable=False)


class Link(db.Model):
    __tablename__ = "links"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    url = db.Column(db.String(400), nullable=False)
    description = db.Column(db.Text)
    logo = db.Column(db.String(400))
    position = db.Column(db.Integer, nullable=False, default=0)


class Track(db.Model):
    __tablename__ = "playlist"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    artist = db.Column(db.String(200))
    url = db.Column(db.String(400), nullable=False)
    cover = db.Column(db.String(400))
    position = db.Column(db.Integer, nullable=False, default=0)


class Visit(db.Model):
    __tablename__ = "visits"

    id = db.Column(db.Integer, primary_key=True)
    page = db.Column(db.String(400), nullable=False)
    ip = db.Column(db.String(100))
    user_agent = db.Column(db.String(400))
    created_at = db.Column(db.DateTime, default=utcnow)
