import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _flag(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")

    # DATABASE_URL from environment, local SQLite file otherwise
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "site.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Counter policy: views on GET /api/posts/<id>, likes on POST .../like
    COUNT_VIEWS = _flag("COUNT_VIEWS", True)
    COUNT_LIKES = _flag("COUNT_LIKES", True)

    # "route" | "enforce" | "off"
    COMMENT_APPROVAL = os.getenv("COMMENT_APPROVAL", "route")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "3000"))
