import logging
from datetime import datetime, timezone

from flask import Flask, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import Config
from models import DEFAULT_EMOJI, db
from records import (
    COMMENTS, GUESTBOOK, LINKS, NOTES, PLAYLIST, POSTS, VISITS,
    RecordStore, ValidationError,
)

logger = logging.getLogger(__name__)

APPROVAL_POLICIES = {"route", "enforce", "off"}


# ===== Helpers =====
def store() -> RecordStore:
    return current_app.extensions["record_store"]


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def ok():
    return jsonify({"success": True})


def approval_filter(moderated_route: bool) -> dict:
    """Filter for comment reads under the configured approval policy."""
    policy = current_app.config["COMMENT_APPROVAL"]
    if policy == "enforce" or (policy == "route" and moderated_route):
        return {"is_approved": True}
    return {}


def register_resource(app, resource, prefix, skip=()):
    """Expose a resource's verbs under ``prefix`` with the uniform shapes."""
    verbs = resource.verbs - set(skip)
    name = resource.name

    if "list" in verbs:
        @app.get(prefix, endpoint=f"{name}_list")
        def list_rows():
            return jsonify(store().list(resource))

    if "get" in verbs:
        @app.get(f"{prefix}/<int:record_id>", endpoint=f"{name}_get")
        def get_row(record_id):
            # missing rows answer null, not 404
            return jsonify(store().get(resource, record_id))

    if "create" in verbs:
        @app.post(prefix, endpoint=f"{name}_create")
        def create_row():
            return jsonify({"id": store().create(resource, json_body())})

    if "update" in verbs:
        @app.put(f"{prefix}/<int:record_id>", endpoint=f"{name}_update")
        def update_row(record_id):
            store().update(resource, record_id, json_body())
            return ok()

    if "delete" in verbs:
        @app.delete(f"{prefix}/<int:record_id>", endpoint=f"{name}_delete")
        def delete_row(record_id):
            store().delete(resource, record_id)
            return ok()

    if "like" in verbs:
        @app.post(f"{prefix}/<int:record_id>/like", endpoint=f"{name}_like")
        def like_row(record_id):
            store().like(resource, record_id)
            return ok()


# ===== Routes =====
def register_routes(app):
    register_resource(app, POSTS, "/api/posts")
    register_resource(app, NOTES, "/api/notes")
    register_resource(app, LINKS, "/api/links")
    register_resource(app, PLAYLIST, "/api/playlist")
    register_resource(app, GUESTBOOK, "/api/guestbook", skip={"create"})
    register_resource(app, COMMENTS, "/api/comments", skip={"list", "create"})

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})

    # ---- comments: generic (CommentSection) and per-post paths ----
    @app.get("/api/comments/<int:post_id>")
    def comments_for_post(post_id):
        return jsonify(store().list(COMMENTS, post_id=post_id, **approval_filter(False)))

    @app.post("/api/comments")
    def create_comment():
        data = json_body()
        # parentId is accepted and ignored: comments are flat
        payload = {
            "post_id": data.get("postId"),
            "author": data.get("author"),
            "content": data.get("content"),
        }
        return jsonify({"id": store().create(COMMENTS, payload)})

    @app.get("/api/posts/<int:post_id>/comments")
    def approved_comments(post_id):
        return jsonify(store().list(COMMENTS, post_id=post_id, **approval_filter(True)))

    @app.post("/api/posts/<int:post_id>/comments")
    def create_post_comment(post_id):
        data = json_body()
        payload = {
            "post_id": post_id,
            "author": data.get("author"),
            "email": data.get("email"),
            "content": data.get("content"),
        }
        return jsonify({"id": store().create(COMMENTS, payload)})

    # ---- guestbook ----
    @app.post("/api/guestbook")
    def create_guestbook_entry():
        data = json_body()
        payload = {
            "name": data.get("author", data.get("name")),
            "email": data.get("email"),
            "emoji": data.get("emoji") or DEFAULT_EMOJI,
            "message": data.get("content", data.get("message")),
        }
        return jsonify({"id": store().create(GUESTBOOK, payload)})

    # ---- visits & stats ----
    @app.post("/api/visits")
    def record_visit():
        data = json_body()
        payload = {
            "page": data.get("page"),
            "ip": request.headers.get("X-Forwarded-For") or "unknown",
            "user_agent": request.headers.get("User-Agent") or "",
        }
        store().create(VISITS, payload)
        return ok()

    @app.get("/api/stats")
    def stats():
        return jsonify(store().stats())

    # ---- settings ----
    @app.get("/api/settings/<key>")
    def get_setting(key):
        return jsonify({"value": store().get_setting(key)})

    @app.put("/api/settings/<key>")
    def put_setting(key):
        store().set_setting(key, json_body().get("value"))
        return ok()


# ===== Errors, CORS, access log =====
def register_hooks(app):
    @app.errorhandler(ValidationError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return jsonify({"error": "database error"}), 500

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    @app.after_request
    def cors_and_log(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        app.logger.info("%s %s %s", request.method, request.path, response.status_code)
        return response


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.json.ensure_ascii = False
    app.logger.setLevel(app.config["LOG_LEVEL"])

    if app.config["COMMENT_APPROVAL"] not in APPROVAL_POLICIES:
        raise ValueError(f"COMMENT_APPROVAL must be one of {sorted(APPROVAL_POLICIES)}")

    db.init_app(app)
    app.extensions["record_store"] = RecordStore(
        count_views=app.config["COUNT_VIEWS"],
        count_likes=app.config["COUNT_LIKES"],
    )

    register_routes(app)
    register_hooks(app)

    # CREATE TABLE IF NOT EXISTS semantics: safe on every start
    with app.app_context():
        db.create_all()

    return app


# Local dev entrypoint (production runs gunicorn wsgi:app)
if __name__ == "__main__":
    logging.basicConfig(level=Config.LOG_LEVEL)
    create_app().run(debug=True, host="127.0.0.1", port=Config.PORT)
